"""
WeChat Adapter 入口脚本

用法:
    python -m wechat_adapter                            # 使用默认配置启动
    python -m wechat_adapter --host 0.0.0.0 --port 9090 # 指定 HTTP 监听地址
    python -m wechat_adapter --config config.yaml       # 指定配置文件
    python -m wechat_adapter --env /path/to/.env        # 指定环境变量文件

启动流程:
    1. 解析命令行参数
    2. 加载 .env 环境变量与 config.yaml
    3. 初始化日志
    4. 创建 WeChatClient（微信接口客户端）与后台任务队列
    5. 创建适配器与 HttpServer（微信回调入口），默认使用回显 Bot
    6. 运行直至 Ctrl+C，优雅退出
"""

import argparse
import asyncio
import logging
import os

from .config import load_env, setup_logging
from .core import AsyncioTaskQueue, HttpServer, WeChatClient, WeChatHttpAdapter
from .models import AppConfig, WeChatSettings

logger = logging.getLogger("wechat-adapter")


def parse_args():
    p = argparse.ArgumentParser(
        prog="wechat_adapter",
        description="WeChat Adapter: 微信公众号 Bot 适配器",
    )
    p.add_argument(
        "--env", default=None,
        help=".env 文件路径 (默认: 当前目录下的 .env)",
    )
    p.add_argument(
        "--config", default="config.yaml",
        help="YAML 配置文件路径 (默认: config.yaml，不存在时使用默认值)",
    )
    p.add_argument(
        "--host", default=None,
        help="HTTP 服务监听地址 (可通过环境变量 HTTP_HOST 覆盖配置文件)",
    )
    p.add_argument(
        "--port", type=int, default=None,
        help="HTTP 服务监听端口 (可通过环境变量 HTTP_PORT 覆盖配置文件)",
    )
    return p.parse_args()


async def main():
    args = parse_args()

    load_env(args.env)
    config = AppConfig.from_yaml(args.config)
    setup_logging(log_dir=config.log.dir, level=config.log.level)

    # 命令行参数优先，其次环境变量，最后使用配置文件
    host = args.host or os.environ.get("HTTP_HOST", config.server.host)
    port = args.port or int(os.environ.get("HTTP_PORT", config.server.port))

    # config.yaml 开启被动回复时覆盖环境变量
    settings = WeChatSettings.from_env(
        passive_response_mode=config.wechat.passive_response_mode or None,
    )

    client = WeChatClient(
        api_base=config.wechat.api_base,
        proxy=config.wechat.proxy or os.environ.get("PROXY"),
    )
    task_queue = None if settings.passive_response_mode else AsyncioTaskQueue(config.wechat.workers)
    adapter = WeChatHttpAdapter(client, task_queue=task_queue)

    @adapter.on_turn_error
    async def on_turn_error(context, error):
        logger.error("Bot 回合出错 (用户 %s): %s", context.activity.from_.id, error)

    server = HttpServer(adapter, settings, host=host, port=port, path=config.server.path)

    await client.start()
    if task_queue is not None:
        task_queue.start()
    try:
        await server.start()
        await asyncio.Event().wait()
    finally:
        await server.stop()
        if task_queue is not None:
            await task_queue.stop()
        await client.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

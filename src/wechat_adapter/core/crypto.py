"""
微信消息签名校验与安全模式加解密

签名:
    sha1(sort([token, timestamp, nonce]) 拼接) 的十六进制串。
    安全模式下 msg_signature 额外把 Encrypt 字段纳入排序。

加解密 (AES-256-CBC, PKCS#7 按 32 字节分组填充):
    key = base64decode(EncodingAESKey + "=")，IV 取 key 前 16 字节
    明文布局: 16 字节随机串 | 4 字节网络序 XML 长度 | XML | AppID
"""

import base64
import binascii
import hashlib
import hmac
import secrets
import struct
import time
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..protocol import SecretInfo
from .errors import ConfigurationError, DecryptionError

# 微信规定的 PKCS#7 分组长度（字节）
PKCS7_BLOCK_SIZE = 32
ENCODING_AES_KEY_LENGTH = 43


def compute_signature(*parts: str) -> str:
    """对任意个参数按字典序排序、拼接后取 SHA-1"""
    raw = "".join(sorted(parts))
    return hashlib.sha1(raw.encode("utf-8", "surrogatepass")).hexdigest()


def _digest_equals(expected: str, signature: str) -> bool:
    """按字节比较十六进制摘要，签名参数可能含任意字符"""
    return hmac.compare_digest(
        expected.encode("ascii"), signature.lower().encode("utf-8", "surrogatepass"),
    )


def verify_signature(token: str, timestamp: str, nonce: str, signature: str) -> bool:
    """校验回调请求的 signature 参数"""
    if not signature:
        return False
    expected = compute_signature(token, timestamp, nonce)
    return _digest_equals(expected, signature)


class MessageCryptography:
    """安全模式消息加解密"""

    def __init__(self, token: str, encoding_aes_key: str, app_id: str):
        """
        Args:
            token:            公众号后台配置的 Token
            encoding_aes_key: 43 位 EncodingAESKey
            app_id:           公众号 AppID，解密后需与明文尾部一致
        """
        if not encoding_aes_key or len(encoding_aes_key) != ENCODING_AES_KEY_LENGTH:
            raise ConfigurationError("EncodingAESKey 必须为 43 位")
        try:
            self.aes_key = base64.b64decode(encoding_aes_key + "=")
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError(f"EncodingAESKey 非法: {e}") from e
        if len(self.aes_key) != 32:
            raise ConfigurationError("EncodingAESKey 解码后长度必须为 32 字节")

        self.token = token
        self.app_id = app_id

    @classmethod
    def from_settings(cls, settings, secret_info: Optional[SecretInfo] = None) -> "MessageCryptography":
        """按请求参数优先、配置其次的顺序选取 EncodingAESKey"""
        key = (secret_info.encoding_aes_key if secret_info else None) or settings.encoding_aes_key
        if not key:
            raise ConfigurationError("收到加密消息, 但未配置 EncodingAESKey")
        return cls(settings.token, key, settings.app_id)

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self.aes_key), modes.CBC(self.aes_key[:16]))

    # -------- 解密 --------

    def decrypt(self, encrypted: str) -> str:
        """解密 Encrypt 字段，返回明文 XML"""
        try:
            data = base64.b64decode(encrypted.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Encrypt 字段 base64 解码失败: {e}") from e

        try:
            decryptor = self._cipher().decryptor()
            padded = decryptor.update(data) + decryptor.finalize()
            unpadder = padding.PKCS7(PKCS7_BLOCK_SIZE * 8).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise DecryptionError(f"AES 解密失败: {e}") from e

        if len(plain) < 20:
            raise DecryptionError("解密后的数据长度非法")
        (xml_len,) = struct.unpack(">I", plain[16:20])
        if 20 + xml_len > len(plain):
            raise DecryptionError("解密后的数据长度非法")

        xml_bytes = plain[20:20 + xml_len]
        from_app_id = plain[20 + xml_len:]
        if not hmac.compare_digest(from_app_id, self.app_id.encode("utf-8")):
            raise DecryptionError(f"AppID 校验失败: {from_app_id.decode('utf-8', errors='replace')}")

        try:
            return xml_bytes.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("解密后的消息不是合法的 UTF-8") from e

    def decrypt_message(self, encrypt: str, secret_info: SecretInfo) -> str:
        """校验 msg_signature（若有）后解密"""
        if secret_info.msg_signature:
            expected = compute_signature(
                self.token, secret_info.timestamp, secret_info.nonce, encrypt
            )
            if not _digest_equals(expected, secret_info.msg_signature):
                raise DecryptionError("msg_signature 校验失败")
        return self.decrypt(encrypt)

    # -------- 加密 --------

    def encrypt(self, plain_xml: str) -> str:
        """加密明文 XML，返回 base64 字符串"""
        xml_bytes = plain_xml.encode("utf-8")
        plain = (
            secrets.token_bytes(16)
            + struct.pack(">I", len(xml_bytes))
            + xml_bytes
            + self.app_id.encode("utf-8")
        )
        padder = padding.PKCS7(PKCS7_BLOCK_SIZE * 8).padder()
        padded = padder.update(plain) + padder.finalize()
        encryptor = self._cipher().encryptor()
        return base64.b64encode(encryptor.update(padded) + encryptor.finalize()).decode("ascii")

    def encrypt_message(self, reply_xml: str, nonce: str, timestamp: Optional[str] = None) -> str:
        """将被动回复包装为加密信封"""
        timestamp = timestamp or str(int(time.time()))
        encrypt = self.encrypt(reply_xml)
        signature = compute_signature(self.token, timestamp, nonce, encrypt)
        return (
            "<xml>"
            f"<Encrypt><![CDATA[{encrypt}]]></Encrypt>"
            f"<MsgSignature><![CDATA[{signature}]]></MsgSignature>"
            f"<TimeStamp>{timestamp}</TimeStamp>"
            f"<Nonce><![CDATA[{nonce}]]></Nonce>"
            "</xml>"
        )

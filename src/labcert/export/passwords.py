"""
PFX 密码生成器。
"""

import secrets
import string

# 去掉了引号、反斜杠、空格等容易在 shell 或 CSV 中出问题的字符
SAFE_PUNCTUATION = "!#%+-.=@^_~"
DEFAULT_ALPHABET = string.ascii_letters + string.digits + SAFE_PUNCTUATION
MIN_LENGTH = 8


class SecurePasswordGenerator:
    """
    使用 secrets 生成密码学安全的随机密码，不依赖任何外部输入。
    """

    def __init__(self, alphabet: str = DEFAULT_ALPHABET):
        if len(set(alphabet)) < 2:
            raise ValueError("字符集至少需要两个不同字符")
        self.alphabet = alphabet

    def generate(self, length: int) -> str:
        """
        生成指定长度的随机密码。
        :param length: 密码长度，不得小于 MIN_LENGTH。
        :raises ValueError: 长度过短。
        """
        if length < MIN_LENGTH:
            raise ValueError(f"密码长度不能小于 {MIN_LENGTH}: {length}")
        return "".join(secrets.choice(self.alphabet) for _ in range(length))

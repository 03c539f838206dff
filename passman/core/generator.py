import random
import secrets
import string


def generate_password(length: int = 10,
                      symbols: bool = False,
                      numbers: bool = False,
                      uppercase: bool = False,
                      exclude: str = "") -> str:
    # 小写字母始终可用，其余字符集按需加入
    pool_map = [string.ascii_lowercase]
    if uppercase: pool_map.append(string.ascii_uppercase)
    if symbols:   pool_map.append(string.punctuation)
    if numbers:   pool_map.append(string.digits)

    pool_map = ["".join(c for c in chars if c not in exclude) for chars in pool_map]
    pool_map = [chars for chars in pool_map if chars]
    if not pool_map:
        raise ValueError("Every candidate character has been excluded")
    if length < len(pool_map):
        raise ValueError(f"Length {length} is too short for {len(pool_map)} required character types")

    password_chars = [secrets.choice(chars) for chars in pool_map]
    full_alphabet = sorted(set("".join(pool_map)))
    for _ in range(length - len(password_chars)):
        password_chars.append(secrets.choice(full_alphabet))
    random.SystemRandom().shuffle(password_chars)
    return "".join(password_chars)

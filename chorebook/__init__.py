"""chorebook - 家事の分担を記録・可視化するドメインライブラリ"""

__version__ = "0.1.0"

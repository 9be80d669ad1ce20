"""ドメイン固有の例外クラス

全サービス共通の4種類のエラー分類。
呼び出し側は ValidationFailed の reason をそのまま表示し、
それ以外は汎用メッセージを表示する想定。
"""


class ChorebookError(Exception):
    """Chorebook の基底例外"""

    pass


class Unauthorized(ChorebookError):
    """操作に必要なロールを持っていない"""

    def __init__(self, message: str = "Actor lacks the required role.") -> None:
        super().__init__(message)


class NotFound(ChorebookError):
    """参照先のエンティティが存在しない、または指定された親に属していない"""

    def __init__(self, message: str = "Entity not found.") -> None:
        super().__init__(message)


class ValidationFailed(ChorebookError):
    """入力がドメインの不変条件に違反している"""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class RepositoryFailure(ChorebookError):
    """ストレージ層のエラー（Firestore等）"""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

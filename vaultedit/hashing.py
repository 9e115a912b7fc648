import pathlib

SHORT_HASH_LEN = 6


class ContentHasher:
    """Content fingerprints for vault naming and tamper detection, via the engine's digest."""

    def __init__(self, engine):
        self.engine = engine

    def digest(self, data: bytes) -> str:
        return self.engine.digest(data)

    def digest_file(self, path: pathlib.Path) -> str:
        return self.digest(pathlib.Path(path).read_bytes())

    @staticmethod
    def short(content_hash: str) -> str:
        """Displayable prefix used in vault entry names."""
        return content_hash[:SHORT_HASH_LEN]

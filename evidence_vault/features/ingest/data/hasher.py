import hashlib
from ..domain.interfaces import IContentAddresser

CHUNK_SIZE = 65536


class SHA256ContentAddresser(IContentAddresser):
    def fingerprint(self, data: bytes) -> str:
        """
        Hashes in 64kb slices so large evidence files are not copied
        into a second buffer.
        """
        sha256_hash = hashlib.sha256()
        view = memoryview(data)
        for offset in range(0, len(view), CHUNK_SIZE):
            sha256_hash.update(view[offset:offset + CHUNK_SIZE])
        return sha256_hash.hexdigest()


import abc


class ObjectStorePort(abc.ABC):

    @abc.abstractmethod
    def fetch_bytes(self, object_key: str) -> bytes:
        """
        Downloads the raw bytes of an object.

        Raises:
            ObjectStoreError: If the object is missing or cannot be read.
        """
        raise NotImplementedError

import abc


class ChatCompletionPort(abc.ABC):

    @abc.abstractmethod
    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Returns the completion text for a system + user prompt pair."""
        raise NotImplementedError

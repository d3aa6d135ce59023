from typing import List

import structlog

from rag_worker.application.ports.chat_port import ChatCompletionPort
from rag_worker.application.use_cases.search_use_case import SearchUseCase
from rag_worker.domain.exceptions import RequestValidationError
from rag_worker.domain.models import AnswerResponse, AnswerSource, SearchHit

log = structlog.get_logger(__name__)

NO_ANSWER_TEXT = "I don't know based on the provided documents."

ANSWER_SYSTEM_PROMPT = (
    "You are a retrieval-augmented assistant.\n"
    "Answer the question ONLY using the provided context.\n"
    f"If the answer is not contained in the context, say \"{NO_ANSWER_TEXT}\"\n"
    "Do NOT use any outside knowledge.\n"
    "Cite sources using the provided document identifiers."
)


def build_context_block(hits: List[SearchHit]) -> str:
    return "\n\n".join(
        f"[doc_id={hit.doc_id} seq_no={hit.seq_no} score={hit.score}]\n{hit.content}" for hit in hits
    )


def build_user_prompt(hits: List[SearchHit], question: str) -> str:
    return f"{build_context_block(hits)}\n\nQuestion:\n{question}"


class AnswerUseCase:
    """
    Answers a question from the retrieved chunks of one knowledge base.

    When retrieval returns nothing, the fixed no-answer text is returned and
    the chat model is not called.
    """

    def __init__(self, search_use_case: SearchUseCase, chat: ChatCompletionPort):
        self.search_use_case = search_use_case
        self.chat = chat
        self.log = log.bind(component="AnswerUseCase")

    def execute(self, tenant_id: str, kb_id: str, question: str, topk: int) -> AnswerResponse:
        if not question:
            raise RequestValidationError("field empty: question")

        search_result = self.search_use_case.execute(tenant_id, kb_id, question, topk)
        hits = search_result.results
        answer_log = self.log.bind(collection=search_result.collection, num_hits=len(hits))

        if not hits:
            answer_log.info("No context retrieved; returning the no-answer text")
            return AnswerResponse(answer=NO_ANSWER_TEXT, sources=[])

        answer = self.chat.complete(ANSWER_SYSTEM_PROMPT, build_user_prompt(hits, question))
        answer_log.info("Answer generated", answer_length=len(answer))
        return AnswerResponse(
            answer=answer,
            sources=[AnswerSource(doc_id=hit.doc_id, seq_no=hit.seq_no, score=hit.score) for hit in hits],
        )

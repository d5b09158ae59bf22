"""
Contextual chunk enrichment.

Asks the completion service for a short summary that situates a chunk
within its source document and prepends it to the chunk, so the stored
text carries enough surrounding context to be found by similarity search.
"""

import dataclasses
import logging
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

from docrag.errors import ContextGenerationError
from docrag.retrieval.chunker import merge_chunks

if TYPE_CHECKING:
    from docrag.llm.factory import CompletionProtocol
    from docrag.retrieval.sections import Section

logger = logging.getLogger(__name__)


CONTEXT_PROMPT_TEMPLATE = """<document>
{document}
</document>
Here is the chunk we want to situate within the whole document
<chunk>
{chunk}
</chunk>
Please give a short succinct context to situate this chunk within the overall document for the purposes of improving search retrieval of the chunk. Answer only with the succinct context and nothing else.
"""

CONTEXT_SEPARATOR = "\n---\n"

# Reasoning models wrap their scratchpad in <think> tags
THINK_TAG_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL)


def strip_think_tags(text: str) -> str:
    """Remove every ``<think>...</think>`` block from model output."""
    return THINK_TAG_PATTERN.sub("", text)


class ContextAugmenter:
    """
    Prefix chunks with a model-generated situating context.

    Example:
        >>> augmenter = ContextAugmenter(create_llm(temperature=0.0))
        >>> augmenter.situate(full_section_text, chunk_text)
        'Krishna explains ...\\n---\\n<chunk text>'
    """

    def __init__(self, llm: "CompletionProtocol") -> None:
        self.llm = llm

    def generate(self, document: str, chunk: str) -> str:
        """
        Generate the situating context for one chunk.

        Args:
            document: Full text the chunk was cut from
            chunk: The chunk text

        Returns:
            The context with think markup removed and whitespace trimmed

        Raises:
            ContextGenerationError: If the completion call fails or is empty
        """
        prompt = CONTEXT_PROMPT_TEMPLATE.format(document=document, chunk=chunk)
        try:
            completion = self.llm.chat([{"role": "user", "content": prompt}])
        except Exception as e:
            raise ContextGenerationError("context generation", str(e)) from e

        if not completion.choices:
            raise ContextGenerationError("context generation", "no response from language model")

        raw = completion.choices[0].content
        logger.debug(f"Context before cleanup: {raw}")
        return strip_think_tags(raw).strip()

    def situate(self, document: str, chunk: str) -> str:
        """Return the chunk prefixed with its context, or unchanged if none came back."""
        context = self.generate(document, chunk)
        if not context:
            return chunk
        return f"{context}{CONTEXT_SEPARATOR}{chunk}"

    def augment_by_chapter(
        self,
        sections: Sequence["Section"],
        overlap_chars: int,
    ) -> list["Section"]:
        """
        Situate every record within its whole chapter rather than its section.

        The chapter text is rebuilt from the records themselves: consecutive
        chunks of one section are merged with their overlap removed, and
        sections are joined with newlines.

        Args:
            sections: Parsed, chunked records in document order
            overlap_chars: Chunk overlap used when the records were produced

        Returns:
            New records with enriched content, in the same order
        """
        documents = build_chapter_documents(sections, overlap_chars)
        for chapter, document in documents.items():
            logger.info(f"Chapter {chapter}: rebuilt {len(document)} characters")

        return [
            dataclasses.replace(
                section,
                content=self.situate(documents[section.chapter], section.content),
            )
            for section in sections
        ]


def build_chapter_documents(
    sections: Sequence["Section"],
    overlap_chars: int,
) -> dict[str, str]:
    """
    Reassemble the full text of each chapter from its chunked records.

    A record with ``chunk_id == 1`` starts a new section.
    """
    runs: dict[str, list[list[str]]] = {}
    for section in sections:
        chapter_runs = runs.setdefault(section.chapter, [])
        if section.chunk_id == 1 or not chapter_runs:
            chapter_runs.append([])
        chapter_runs[-1].append(section.content)

    return {
        chapter: "\n".join(merge_chunks(run, overlap_chars) for run in chapter_runs)
        for chapter, chapter_runs in runs.items()
    }

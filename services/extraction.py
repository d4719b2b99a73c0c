import re
import uuid
from typing import List, Optional, Tuple

from services.types import CodeBlock

# opening fence with optional language tag, body up to the next fence
CODE_FENCE_RE = re.compile(r"```(\w+)?\n(.*?)```", re.DOTALL)
SLASH_COMMAND_RE = re.compile(r"^/(\w+)")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def extract_code_blocks(text: str) -> List[CodeBlock]:
    """One CodeBlock per fenced region, in source order."""
    return [
        CodeBlock(id=str(uuid.uuid4()), language=m.group(1) or "text", content=m.group(2).strip())
        for m in CODE_FENCE_RE.finditer(text or "")
    ]


def extract_assistant_content(text: str) -> Tuple[str, List[CodeBlock]]:
    """Split an assistant reply into prose (fences removed) and its code blocks."""
    blocks = extract_code_blocks(text)
    if not blocks:
        return (text or "").strip(), []
    prose = CODE_FENCE_RE.sub("", text)
    prose = _BLANK_RUN_RE.sub("\n\n", prose).strip()
    return prose, blocks


def extract_command(text: str) -> Optional[str]:
    m = SLASH_COMMAND_RE.match(text or "")
    return m.group(1) if m else None

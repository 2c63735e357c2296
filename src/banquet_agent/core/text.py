import re
from typing import List

_WHITESPACE_RE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.!?])")
# 문장부호 뒤에 공백/다른 부호/닫는 괄호·따옴표가 오지 않으면 공백 하나를 넣는다
_SPACE_AFTER_PUNCT_RE = re.compile(r"([,.!?])(?=[^\s,.!?)\]\"'])")
# 이메일, URL, 숫자(3.5, 1,000, 6:30)는 건드리지 않는다
_PROTECTED_RE = re.compile(
    r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+"
    r"|(?:https?://|www\.)\S+"
    r"|\d+(?:[.,:]\d+)+"
)


def _space_after_punct(line: str) -> str:
    protected = [m.span() for m in _PROTECTED_RE.finditer(line)]

    def repl(match: re.Match) -> str:
        pos = match.start(1)
        if any(start <= pos < end for start, end in protected):
            return match.group(1)
        return match.group(1) + " "

    return _SPACE_AFTER_PUNCT_RE.sub(repl, line)


def _clean_line(line: str) -> str:
    line = _WHITESPACE_RE.sub(" ", line)
    line = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", line)
    line = _space_after_punct(line)
    return line.strip()


def clean_text(text: str | None, keep_newlines: bool = False) -> str:
    """공백과 문장부호 간격을 정리한다.

    - 연속된 공백은 하나로 줄인다
    - 문장부호(, . ! ?) 앞의 공백은 제거한다
    - 문장부호 뒤에 글자가 바로 붙으면 공백 하나를 넣는다
    - 앞뒤 공백은 제거한다

    keep_newlines=True 이면 줄 단위로 정리하고 줄바꿈은 유지한다
    (목록이 들어간 안내 문구용). 이미 정리된 문자열에 다시 적용해도 결과가 같다.
    """
    if not text:
        return ""

    if not keep_newlines:
        return _clean_line(text)

    lines = [_clean_line(line) for line in text.replace("\r\n", "\n").split("\n")]
    out: List[str] = []
    for line in lines:
        # 빈 줄은 연속으로 두 번 이상 넣지 않는다
        if not line and (not out or not out[-1]):
            continue
        out.append(line)
    while out and not out[-1]:
        out.pop()
    return "\n".join(out)


def chunk_text(text: str, size: int) -> List[str]:
    """미리 만들어진 문자열을 고정 크기 조각으로 나눈다."""
    if not text:
        return []
    if size <= 0:
        return [text]
    return [text[i : i + size] for i in range(0, len(text), size)]

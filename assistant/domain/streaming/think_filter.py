from typing import List

OPEN_MARKER = "<think>"
CLOSE_MARKER = "</think>"


def _partial_marker_length(text: str, marker: str) -> int:
    """Length of the longest suffix of text that is a proper prefix of marker"""

    for size in range(min(len(text), len(marker) - 1), 0, -1):
        if marker.startswith(text[-size:]):
            return size
    return 0


class ThinkTagFilter:
    """Strips reasoning spans from streamed text.

    Stateful across chunks: a marker may straddle any number of deltas, so a
    trailing fragment that could still grow into a marker is held back and
    prefixed onto the next chunk.
    """

    def __init__(self, open_marker: str = OPEN_MARKER, close_marker: str = CLOSE_MARKER):
        self.open_marker = open_marker
        self.close_marker = close_marker
        self.inside = False
        self._carry = ""

    def feed(self, chunk: str) -> str:
        """Return the client-visible part of chunk"""

        buffer = self._carry + chunk
        self._carry = ""
        output: List[str] = []

        while buffer:
            marker = self.close_marker if self.inside else self.open_marker
            index = buffer.find(marker)

            if index != -1:
                if not self.inside:
                    output.append(buffer[:index])
                buffer = buffer[index + len(marker):]
                self.inside = not self.inside
                continue

            held = _partial_marker_length(buffer, marker)
            if not self.inside:
                output.append(buffer[:len(buffer) - held])
            self._carry = buffer[len(buffer) - held:]
            break

        return "".join(output)

    def flush(self) -> str:
        """Release held-back text once the stream has ended"""

        carry, self._carry = self._carry, ""
        return "" if self.inside else carry

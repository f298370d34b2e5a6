# Format inspection - FFprobe codec/resolution check deciding between remux and re-encode

import subprocess
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    """How the source is turned into HLS output"""

    REMUX = "remux"        # copy streams, no re-encode
    REENCODE = "reencode"  # decode and encode to the target codec


@dataclass(frozen=True)
class FormatDecision:
    codec_is_compatible: bool
    resolution_within_limits: bool
    codec: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def strategy(self) -> Strategy:
        if self.codec_is_compatible and self.resolution_within_limits:
            return Strategy.REMUX
        return Strategy.REENCODE

    @property
    def conclusive(self) -> bool:
        return self.codec is not None


INCONCLUSIVE = FormatDecision(codec_is_compatible=False, resolution_within_limits=False)


def parse_probe_output(output: str) -> Optional[Tuple[str, int, int]]:
    """
    Parse FFprobe csv output of the form "codec,width,height"

    Returns:
        (codec, width, height) or None if the line cannot be parsed
    """
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = [part.strip() for part in line.split(",")]
        if len(parts) < 3 or not parts[0]:
            return None
        try:
            width = int(parts[1])
            height = int(parts[2])
        except ValueError:
            return None
        if width <= 0 or height <= 0:
            return None
        return parts[0].lower(), width, height
    return None


class FormatInspector:
    """Decides whether a source can be repackaged without re-encoding"""

    def __init__(
        self,
        ffprobe_path: str = "ffprobe",
        timeout: float = 30.0,
        target_codec: str = "h264",
        max_width: int = 1920,
        max_height: int = 1080,
    ):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self.target_codec = target_codec.lower()
        self.max_width = max_width
        self.max_height = max_height

    def build_command(self, input_path: str) -> list:
        return [
            self.ffprobe_path,
            "-v", "quiet",
            "-select_streams", "v:0",
            "-show_entries", "stream=codec_name,width,height",
            "-of", "csv=p=0",
            str(input_path),
        ]

    def decide(self, codec: str, width: int, height: int) -> FormatDecision:
        return FormatDecision(
            codec_is_compatible=codec.lower() == self.target_codec,
            resolution_within_limits=width <= self.max_width and height <= self.max_height,
            codec=codec.lower(),
            width=width,
            height=height,
        )

    def inspect(self, input_path: str) -> FormatDecision:
        """
        Probe the first video stream of a file.

        Any failure to confirm compatibility (probe missing, timeout, non-zero
        exit, unparseable output) yields an inconclusive decision, which always
        selects re-encoding.

        Args:
            input_path: Path to the staged source file

        Returns:
            FormatDecision
        """
        cmd = self.build_command(input_path)

        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, errors="replace", timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"FFprobe timed out after {self.timeout}s on {input_path}, defaulting to re-encode")
            return INCONCLUSIVE
        except OSError as e:
            logger.warning(f"FFprobe could not be started ({e}), defaulting to re-encode")
            return INCONCLUSIVE

        if result.returncode != 0:
            logger.warning(f"FFprobe exited with code {result.returncode} on {input_path}, defaulting to re-encode")
            return INCONCLUSIVE

        parsed = parse_probe_output(result.stdout)
        if parsed is None:
            logger.warning(f"Unrecognised FFprobe output for {input_path}: {result.stdout.strip()!r}")
            return INCONCLUSIVE

        decision = self.decide(*parsed)
        logger.info(
            f"Probed {input_path}: codec={decision.codec} {decision.width}x{decision.height} -> {decision.strategy.value}"
        )
        return decision

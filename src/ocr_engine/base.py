"""
Recognition Backend Interface.

Every text recognition engine plugs into the pipeline through this
interface. Backends return literal tokens with pixel boxes and their
own confidences; cleanup, reading order and bbox normalization are the
adapter's job.

Author: ML Engineering Team
"""

from abc import ABC, abstractmethod
from typing import List

from src.input_handler.image_processor import NormalizedImage
from .ocr_result import TextToken


class RecognitionBackend(ABC):
    """
    Interface for text recognition engines.

    Implementations must:
        - Return an empty list (not raise) when the image has no text
        - Raise RecognitionUnavailableError when the engine cannot be
          reached or invoked
        - Report confidence in [0, 1] and boxes in canonical pixels
    """

    name: str = "unknown"

    @abstractmethod
    async def recognize(self, image: NormalizedImage) -> List[TextToken]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"

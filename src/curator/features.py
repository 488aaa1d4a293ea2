from abc import ABC, abstractmethod

from core.config import Settings


class FeatureAvailability(ABC):
    @abstractmethod
    def is_face_detection_available(self) -> bool:
        raise NotImplementedError()


class StaticFeatureAvailability(FeatureAvailability):
    def __init__(self, face_detection: bool = True):
        self.face_detection = face_detection

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticFeatureAvailability":
        return cls(face_detection=settings.FACE_DETECTION_AVAILABLE)

    def is_face_detection_available(self) -> bool:
        return self.face_detection

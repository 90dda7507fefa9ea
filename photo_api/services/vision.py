import io
import logging
import os
from typing import List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from photo_api.utils.guard import in01

log = logging.getLogger(__name__)

# Optional: face_recognition (dlib) for classifying faces against samples
try:
    import face_recognition
    _HAS_FACE_REC = True
except Exception:
    _HAS_FACE_REC = False

# Minimal face detection using OpenCV Haar cascades (offline & free).
_face = cv2.CascadeClassifier(cv2.data.haarcascades + "haarcascade_frontalface_default.xml")

SAMPLE_EXTENSIONS = (".jpg", ".jpeg", ".png")


def to_rgb_np(img_bytes: bytes) -> np.ndarray:
    file_bytes = np.frombuffer(img_bytes, np.uint8)
    bgr = cv2.imdecode(file_bytes, cv2.IMREAD_COLOR)
    if bgr is None:
        # GIF and friends: let PIL decode
        pil = Image.open(io.BytesIO(img_bytes)).convert("RGB")
        return np.array(pil)
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def detect_faces(img_bytes: bytes) -> List[Tuple[float, float, float, float]]:
    """Face boxes as (x, y, w, h), normalized to [0..1]."""
    rgb = to_rgb_np(img_bytes)
    gray = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)
    det = _face.detectMultiScale(gray, scaleFactor=1.2, minNeighbors=5, minSize=(60, 60))
    H, W = gray.shape
    faces = []
    for (x, y, w0, h0) in det:
        fx, fy, fw, fh = (x / W), (y / H), (w0 / W), (h0 / H)
        in01(fx, "face_x"); in01(fy, "face_y"); in01(fw, "face_w"); in01(fh, "face_h")
        faces.append((float(fx), float(fy), float(fw), float(fh)))
    return faces


def person_from_sample(filename: str) -> str:
    """Samples are named ``{person}_{anything}.jpg``."""
    return os.path.splitext(os.path.basename(filename))[0].split("_")[0]


class FaceRecogniser:
    """Classifies faces in a photo against a directory of labelled sample photos."""

    def __init__(self, samples_dir: str, tolerance: float = 0.4):
        self.samples_dir = samples_dir
        self.tolerance = tolerance
        self._names: List[str] = []
        self._encodings: List[np.ndarray] = []
        self._loaded = False

    def load_samples(self) -> int:
        self._names, self._encodings = [], []
        if not _HAS_FACE_REC:
            log.warning("face_recognition is not installed, face classification disabled")
            self._loaded = True
            return 0
        try:
            files = sorted(os.listdir(self.samples_dir))
        except OSError as e:
            log.error("Cannot read samples directory %s: %s", self.samples_dir, e)
            files = []
        for name in files:
            if not name.lower().endswith(SAMPLE_EXTENSIONS):
                continue
            path = os.path.join(self.samples_dir, name)
            image = face_recognition.load_image_file(path)
            encodings = face_recognition.face_encodings(image)
            if not encodings:
                log.warning("No face found in sample %s", name)
                continue
            self._names.append(person_from_sample(name))
            self._encodings.append(encodings[0])
        self._loaded = True
        log.info("Added %s sample faces from %s", len(self._encodings), self.samples_dir)
        return len(self._encodings)

    def classify(self, img_bytes: bytes) -> List[str]:
        """Names of the known people found in the photo, in detection order, without repeats."""
        if not self._loaded:
            self.load_samples()
        if not _HAS_FACE_REC or not self._encodings:
            return []
        rgb = to_rgb_np(img_bytes)
        boxes = face_recognition.face_locations(rgb, model="hog")
        names: List[str] = []
        for enc in face_recognition.face_encodings(rgb, boxes):
            match = self._best_match(enc)
            if match and match not in names:
                names.append(match)
        return names

    def _best_match(self, encoding: np.ndarray) -> Optional[str]:
        distances = face_recognition.face_distance(self._encodings, encoding)
        if len(distances) == 0:
            return None
        best = int(np.argmin(distances))
        if distances[best] > self.tolerance:
            return None
        return self._names[best]

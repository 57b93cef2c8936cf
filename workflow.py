"""
Per-session workflow: Upload -> Crop -> Analyze -> Result.

The Workflow object is the only thing that mutates session state. Network calls
(analysis, visualization) run outside the lock so a slow Gemini call never
blocks a state read from another request.
"""

import threading
import time
import traceback
from collections import OrderedDict
from enum import Enum

import gemini_service
from color_models import AnalysisResult, ColorInfo
from imaging import center_square_crop

ANALYSIS_ERROR_MESSAGE = "AI Analysis encountered an issue. Please try a clearer photo."
QUOTA_ERROR_MESSAGE = "High traffic. Please try again in 1 minute."
VISUALIZATION_ERROR_MESSAGE = "Visualization failed. Please try another color."


class AppStep(str, Enum):
    UPLOAD = "UPLOAD"
    CROP = "CROP"
    ANALYZE = "ANALYZE"
    RESULT = "RESULT"


class WorkflowError(Exception):
    """Raised when an action is not allowed in the current step."""


def describe_outfit(color: ColorInfo) -> str:
    if color.is_gradient and color.gradient_end_hex:
        return f"Ombre Saree transition from {color.hex} to {color.gradient_end_hex}"
    if color.tertiary_hex:
        return (f"Three-color Saree with Body: {color.hex}, "
                f"Border: {color.secondary_hex}, Blouse: {color.tertiary_hex}")
    if color.secondary_hex:
        return f"Two-color Saree with Body: {color.hex} and Border: {color.secondary_hex}"
    return f"Solid {color.name} ({color.hex}) Saree"


class Workflow:

    def __init__(self, analyzer=None, visualizer=None, cropper=None):
        self._analyzer = analyzer
        self._visualizer = visualizer
        self._cropper = cropper or center_square_crop
        self._lock = threading.Lock()
        self._generation = 0
        self._vis_token = 0
        self._reset()

    def _reset(self):
        self.step = AppStep.UPLOAD
        self.raw_image = None
        self.cropped_image = None
        self.analysis: AnalysisResult | None = None
        self.loading = False
        self.error = None
        self._reset_result_view()

    def _reset_result_view(self):
        self.display_image = None
        self.is_original = True
        self.selected_color_id = None
        self.selected_color: ColorInfo | None = None
        self.visualizing_id = None
        self.vis_error = None

    # --- transitions ---

    def select_image(self, data_url: str):
        with self._lock:
            if self.step not in (AppStep.UPLOAD, AppStep.CROP):
                raise WorkflowError(f"Cannot select an image during {self.step.value}")
            self.raw_image = data_url
            self.error = None
            self.step = AppStep.CROP
            print("[FLOW] Image selected -> CROP")

    def confirm_crop(self):
        with self._lock:
            if self.step != AppStep.CROP or not self.raw_image:
                raise WorkflowError(f"Cannot confirm crop during {self.step.value}")
            raw_image = self.raw_image
            generation = self._generation
            self.step = AppStep.ANALYZE
            self.loading = True
            self.error = None
            print("[FLOW] Crop confirmed -> ANALYZE")

        analyzer = self._analyzer or gemini_service.analyze_image
        cropped = None
        result = None
        try:
            cropped = self._cropper(raw_image)
            result = analyzer(cropped)
        except Exception as e:
            print(f"[FLOW] Analysis failed: {e}")
            traceback.print_exc()

        with self._lock:
            if generation != self._generation:
                # restarted while the analysis was running
                print("[FLOW] Discarding analysis result, workflow was restarted.")
                return
            self.loading = False
            if result is None:
                self.error = ANALYSIS_ERROR_MESSAGE
                self.step = AppStep.UPLOAD
                print("[FLOW] -> UPLOAD (analysis error)")
                return
            self.cropped_image = cropped
            self.analysis = result
            self._reset_result_view()
            self.display_image = cropped
            self.step = AppStep.RESULT
            print("[FLOW] -> RESULT")

    def restart(self):
        with self._lock:
            self._generation += 1
            self._vis_token += 1
            self._reset()
            print("[FLOW] Restart -> UPLOAD")

    def visualize(self, category: str, color: ColorInfo):
        """Render the cropped portrait in the chosen color. Only the latest
        request may update the view; older ones are dropped when they land."""
        with self._lock:
            if self.step != AppStep.RESULT:
                raise WorkflowError(f"Cannot visualize during {self.step.value}")
            self._vis_token += 1
            token = self._vis_token
            unique_id = f"{category}-{color.name}"
            self.visualizing_id = unique_id
            self.selected_color_id = unique_id
            self.selected_color = color
            self.vis_error = None
            source = self.cropped_image

        visualizer = self._visualizer or gemini_service.visualize_outfit
        details = describe_outfit(color)
        edited = None
        vis_error = None
        try:
            edited = visualizer(source, details)
        except Exception as e:
            print(f"[GEN] Visualization failed: {e}")
            traceback.print_exc()
            vis_error = QUOTA_ERROR_MESSAGE if gemini_service.is_rate_limit_error(e) else VISUALIZATION_ERROR_MESSAGE

        with self._lock:
            if token != self._vis_token:
                print(f"[GEN] Dropping superseded visualization for {unique_id}")
                return
            self.visualizing_id = None
            if vis_error:
                self.vis_error = vis_error
                return
            self.display_image = edited
            self.is_original = False

    def toggle_original(self):
        with self._lock:
            if self.step != AppStep.RESULT:
                raise WorkflowError(f"Cannot toggle view during {self.step.value}")
            has_try_on = self.display_image is not None and self.display_image != self.cropped_image
            if self.is_original and has_try_on:
                self.is_original = False
            else:
                self.is_original = True

    def snapshot(self) -> dict:
        with self._lock:
            shown = self.cropped_image if self.is_original else self.display_image
            return {
                "step": self.step.value,
                "raw_image": self.raw_image,
                "cropped_image": self.cropped_image,
                "analysis": self.analysis.to_dict() if self.analysis else None,
                "loading": self.loading,
                "error": self.error,
                "display_image": shown,
                "has_try_on": self.display_image is not None and self.display_image != self.cropped_image,
                "is_original": self.is_original,
                "selected_color_id": self.selected_color_id,
                "selected_color": self.selected_color.to_dict() if self.selected_color else None,
                "visualizing_id": self.visualizing_id,
                "vis_error": self.vis_error,
            }


class WorkflowStore:
    """In-memory session id -> Workflow map. Nothing is persisted.

    Bounded two ways: sessions idle longer than `ttl` seconds are dropped, and
    past `max_sessions` the least recently used one is evicted.
    """

    def __init__(self, factory=Workflow, max_sessions: int = 256, ttl: float = 3600,
                 clock=time.monotonic):
        self._factory = factory
        self._max_sessions = max_sessions
        self._ttl = ttl
        self._clock = clock
        self._workflows = OrderedDict()   # session id -> (workflow, last used)
        self._lock = threading.Lock()

    def _expire(self, now):
        while self._workflows:
            sid, (_, last_used) = next(iter(self._workflows.items()))
            if now - last_used < self._ttl:
                break
            del self._workflows[sid]
            print(f"[FLOW] Session {sid[:8]} expired")

    def get(self, session_id: str) -> Workflow:
        with self._lock:
            now = self._clock()
            self._expire(now)
            entry = self._workflows.pop(session_id, None)
            wf = entry[0] if entry else self._factory()
            self._workflows[session_id] = (wf, now)
            while len(self._workflows) > self._max_sessions:
                sid, _ = self._workflows.popitem(last=False)
                print(f"[FLOW] Session {sid[:8]} evicted, store full")
            return wf

    def discard(self, session_id: str):
        with self._lock:
            self._workflows.pop(session_id, None)

    def __contains__(self, session_id):
        with self._lock:
            return session_id in self._workflows

    def __len__(self):
        with self._lock:
            return len(self._workflows)

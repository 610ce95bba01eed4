from .detectors import DetectorConfig, build_detectors
from .metrics import Stage, StitchingMetrics, Timer
from .runner import BenchmarkRunner, StageOutcome

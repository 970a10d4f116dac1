import inspect
import logging
import json
import time
from typing import Dict, Any
from datetime import datetime
from functools import wraps
from config import config

class MetricsCollector:
    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.metrics: Dict[str, Any] = {}

    def record_timing(self, operation: str, duration: float):
        if not self.enabled:
            return
        timings = self.metrics.setdefault('timings', {})
        timings.setdefault(operation, []).append(duration)

    def timing_summary(self, operation: str) -> Dict[str, float]:
        samples = self.metrics.get('timings', {}).get(operation, [])
        if not samples:
            return {'count': 0, 'mean': 0.0, 'max': 0.0}
        return {'count': len(samples), 'mean': sum(samples) / len(samples), 'max': max(samples)}

    def increment_counter(self, counter: str, value: int = 1):
        if not self.enabled:
            return
        counters = self.metrics.setdefault('counters', {})
        counters[counter] = counters.get(counter, 0) + value

    def set_gauge(self, gauge: str, value: float):
        if not self.enabled:
            return
        self.metrics.setdefault('gauges', {})[gauge] = value

    def get_metrics(self) -> Dict[str, Any]:
        return json.loads(json.dumps(self.metrics))

    def clear_metrics(self):
        self.metrics.clear()

metrics = MetricsCollector(enabled=config.logging.enable_metrics)

class StructuredLogger:
    def __init__(self, name: str, level: str = "INFO", log_file: str = ""):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

        handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def log_structured(self, level: str, message: str, **kwargs):
        log_data = {
            'timestamp': datetime.now().isoformat(),
            'level': level,
            'message': message,
            **kwargs
        }

        log_method = getattr(self.logger, level.lower())
        log_method(json.dumps(log_data, default=str))

    def info(self, message: str, **kwargs):
        self.log_structured('INFO', message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.log_structured('WARNING', message, **kwargs)

    def error(self, message: str, **kwargs):
        self.log_structured('ERROR', message, **kwargs)

    def debug(self, message: str, **kwargs):
        self.log_structured('DEBUG', message, **kwargs)

logger = StructuredLogger("music_recommendations", config.logging.log_level, config.logging.log_file)

def log_performance(operation: str, verbose: bool = False):
    def finish(start: float, outcome: str):
        duration = time.perf_counter() - start
        metrics.record_timing(operation, duration)
        metrics.increment_counter(f"{operation}_{outcome}")
        if verbose:
            logger.info(f"Operation {operation} completed", operation=operation, duration=duration, outcome=outcome)

    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                outcome = "error"
                try:
                    result = await func(*args, **kwargs)
                    outcome = "success"
                    return result
                finally:
                    finish(start, outcome)
            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            outcome = "error"
            try:
                result = func(*args, **kwargs)
                outcome = "success"
                return result
            finally:
                finish(start, outcome)
        return wrapper
    return decorator

def log_model_metrics(model_name: str, metrics_data: Dict[str, Any]):
    logger.info("Model metrics", model_name=model_name, metrics=metrics_data)

def monitor_request(func):
    return log_performance(f"request_{func.__name__}")(func)

def monitor_strategy(func):
    return log_performance(f"strategy_{func.__name__}")(func)

def monitor_training(func):
    return log_performance(f"training_{func.__name__}", verbose=True)(func)

"""Layers package initialization."""
from dealer_crawl.layers.quality_gate import QualityGate
from dealer_crawl.layers.health_monitor import HealthMonitor
from dealer_crawl.layers.validation import ValidationStateMachine, ValidationTransition
from dealer_crawl.layers.preflight import PreflightLayer, PreflightResult
from dealer_crawl.layers.orchestrator import CrawlMode, CrawlOrchestrator

__all__ = [
    "QualityGate",
    "HealthMonitor",
    "ValidationStateMachine",
    "ValidationTransition",
    "PreflightLayer",
    "PreflightResult",
    "CrawlMode",
    "CrawlOrchestrator",
]

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CacheStats(BaseModel):
    hits: int
    misses: int
    invalidations: int
    evictions: int = 0
    size: int
    max_size: int
    hit_rate: str


class RateLimitDetail(BaseModel):
    limit: int
    current: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    reset_time: datetime


class KpiMetrics(BaseModel):
    total_maintenance_requests: int
    pending_requests: int
    completed_requests: int
    in_progress_requests: int
    requests_by_priority: Dict[str, int]
    average_cost: float


class UserMetrics(BaseModel):
    total_users: int
    active_users: int
    users_by_role: Dict[str, int]
    recent_registrations: int


class EquipmentMetrics(BaseModel):
    total_equipment: int
    operational: int
    needs_maintenance: int
    out_of_service: int
    critical_equipment: int
    equipment_by_type: Dict[str, int]


class ActivityItem(BaseModel):
    type: str
    title: str
    user: str
    timestamp: Optional[str] = None
    status: Optional[str] = None
    id: str


class DashboardData(BaseModel):
    kpi_metrics: KpiMetrics
    user_metrics: UserMetrics
    equipment_metrics: EquipmentMetrics
    maintenance_overview: Dict[str, Any]
    recent_activity: List[ActivityItem]
    performance_metrics: Dict[str, Any]
    generated_at: str


class DashboardStatisticsResponse(BaseModel):
    success: bool = True
    cached: bool
    last_updated: Optional[str] = None
    cached_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    data: DashboardData
    cache_stats: CacheStats


class RefreshResponse(BaseModel):
    success: bool = True
    message: str
    cache_stats: CacheStats


class CacheStatsResponse(BaseModel):
    success: bool = True
    cache: CacheStats
    active_rate_limited_clients: int
    uptime_minutes: float

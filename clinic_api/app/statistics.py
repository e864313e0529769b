"""
Dashboard statistics aggregation.

Everything here is the expensive path the dashboard cache protects: one
transaction, a handful of GROUP BY queries over maintenance requests,
equipment and users. Database errors propagate so a failed run is never
cached.
"""
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from sqlalchemy import text

from .db import engine

RECENT_REGISTRATION_DAYS = 30

MAINTENANCE_TOTALS_SQL = text("""
    SELECT
      COUNT(*) AS total,
      COALESCE(SUM(cost), 0) AS total_cost,
      COALESCE(AVG(cost), 0) AS average_cost,
      COALESCE(MAX(cost), 0) AS highest_cost
    FROM maintenance_request;
""")

MAINTENANCE_BY_STATUS_SQL = text("""
    SELECT status AS label, COUNT(*) AS count
    FROM maintenance_request
    GROUP BY status;
""")

MAINTENANCE_BY_PRIORITY_SQL = text("""
    SELECT priority AS label, COUNT(*) AS count
    FROM maintenance_request
    GROUP BY priority;
""")

RECENT_MAINTENANCE_SQL = text("""
    SELECT
      m.request_id, m.title, m.status, m.priority, m.cost, m.date_reported,
      u.first_name AS reporter_first_name, u.last_name AS reporter_last_name
    FROM maintenance_request m
    LEFT JOIN app_user u ON u.id = m.reported_by
    ORDER BY m.date_reported DESC
    LIMIT :limit;
""")

EQUIPMENT_TOTALS_SQL = text("""
    SELECT
      COUNT(*) AS total,
      COUNT(*) FILTER (WHERE is_critical) AS critical
    FROM equipment;
""")

EQUIPMENT_BY_STATUS_SQL = text("""
    SELECT status AS label, COUNT(*) AS count
    FROM equipment
    GROUP BY status;
""")

EQUIPMENT_BY_TYPE_SQL = text("""
    SELECT type AS label, COUNT(*) AS count
    FROM equipment
    GROUP BY type;
""")

USER_TOTALS_SQL = text("""
    SELECT
      COUNT(*) AS total,
      COUNT(*) FILTER (WHERE is_active) AS active,
      COUNT(*) FILTER (WHERE created_at >= :since) AS recent_registrations
    FROM app_user;
""")

USER_BY_ROLE_SQL = text("""
    SELECT role AS label, COUNT(*) AS count
    FROM app_user
    GROUP BY role;
""")

RECENT_USERS_SQL = text("""
    SELECT id, first_name, last_name, role, created_at
    FROM app_user
    ORDER BY created_at DESC
    LIMIT :limit;
""")


def _counts(conn, stmt) -> Dict[str, int]:
    rows = conn.execute(stmt).mappings().all()
    return {row["label"]: int(row["count"]) for row in rows}


def _iso(value):
    return value.isoformat() if value else None


def get_maintenance_statistics(conn) -> Dict[str, Any]:
    totals = conn.execute(MAINTENANCE_TOTALS_SQL).mappings().first()
    recent = conn.execute(RECENT_MAINTENANCE_SQL, {"limit": 5}).mappings().all()
    return {
        "total": int(totals["total"]),
        "by_status": _counts(conn, MAINTENANCE_BY_STATUS_SQL),
        "by_priority": _counts(conn, MAINTENANCE_BY_PRIORITY_SQL),
        "total_cost": float(totals["total_cost"]),
        "average_cost": round(float(totals["average_cost"])),
        "highest_cost": float(totals["highest_cost"]),
        "recent": [
            {
                "request_id": row["request_id"],
                "title": row["title"],
                "status": row["status"],
                "priority": row["priority"],
                "cost": float(row["cost"]) if row.get("cost") is not None else None,
                "date_reported": _iso(row.get("date_reported")),
            }
            for row in recent
        ],
    }


def get_equipment_statistics(conn) -> Dict[str, Any]:
    totals = conn.execute(EQUIPMENT_TOTALS_SQL).mappings().first()
    return {
        "total": int(totals["total"]),
        "by_status": _counts(conn, EQUIPMENT_BY_STATUS_SQL),
        "by_type": _counts(conn, EQUIPMENT_BY_TYPE_SQL),
        "critical": int(totals["critical"]),
    }


def get_user_statistics(conn, now: datetime) -> Dict[str, Any]:
    since = now - timedelta(days=RECENT_REGISTRATION_DAYS)
    totals = conn.execute(USER_TOTALS_SQL, {"since": since}).mappings().first()
    return {
        "total": int(totals["total"]),
        "active": int(totals["active"]),
        "by_role": _counts(conn, USER_BY_ROLE_SQL),
        "recent_registrations": int(totals["recent_registrations"]),
    }


def get_recent_activity(conn, limit: int = 5) -> List[Dict[str, Any]]:
    """Newest maintenance requests and sign-ups merged into one feed."""
    activities = []

    for row in conn.execute(RECENT_MAINTENANCE_SQL, {"limit": 3}).mappings().all():
        if row.get("reporter_first_name"):
            reporter = f"{row['reporter_first_name']} {row['reporter_last_name']}"
        else:
            reporter = "Unknown"
        activities.append({
            "type": "maintenance",
            "title": f"New maintenance request: {row['title']}",
            "user": reporter,
            "timestamp": row["date_reported"],
            "status": row["status"],
            "id": str(row["request_id"]),
        })

    for row in conn.execute(RECENT_USERS_SQL, {"limit": 2}).mappings().all():
        name = f"{row['first_name']} {row['last_name']}"
        activities.append({
            "type": "user",
            "title": f"New user registered: {name}",
            "user": name,
            "timestamp": row["created_at"],
            "status": row["role"],
            "id": str(row["id"]),
        })

    activities.sort(key=lambda a: a["timestamp"], reverse=True)
    for activity in activities:
        activity["timestamp"] = _iso(activity["timestamp"])
    return activities[:limit]


def build_dashboard_statistics() -> Dict[str, Any]:
    started = time.perf_counter()
    now = datetime.now(timezone.utc)

    with engine.begin() as conn:
        maintenance = get_maintenance_statistics(conn)
        equipment = get_equipment_statistics(conn)
        users = get_user_statistics(conn, now)
        activity = get_recent_activity(conn)

    processing_ms = round((time.perf_counter() - started) * 1000)
    eq_status = equipment["by_status"]
    generated_at = datetime.now(timezone.utc).isoformat()

    return {
        "kpi_metrics": {
            "total_maintenance_requests": maintenance["total"],
            "pending_requests": maintenance["by_status"].get("Open", 0),
            "completed_requests": maintenance["by_status"].get("Completed", 0),
            "in_progress_requests": maintenance["by_status"].get("In Progress", 0),
            "requests_by_priority": maintenance["by_priority"],
            "average_cost": maintenance["average_cost"],
        },
        "user_metrics": {
            "total_users": users["total"],
            "active_users": users["active"],
            "users_by_role": users["by_role"],
            "recent_registrations": users["recent_registrations"],
        },
        "equipment_metrics": {
            "total_equipment": equipment["total"],
            "operational": eq_status.get("Operational", 0),
            "needs_maintenance": eq_status.get("Needs Repair", 0) + eq_status.get("Under Maintenance", 0),
            "out_of_service": eq_status.get("Out of Service", 0),
            "critical_equipment": equipment["critical"],
            "equipment_by_type": equipment["by_type"],
        },
        "maintenance_overview": {
            "status_breakdown": maintenance["by_status"],
            "priority_breakdown": maintenance["by_priority"],
            "recent_requests": maintenance["recent"],
            "cost_analysis": {
                "total_cost": maintenance["total_cost"],
                "average_cost": maintenance["average_cost"],
                "highest_cost": maintenance["highest_cost"],
            },
        },
        "recent_activity": activity,
        "performance_metrics": {
            "processing_time_ms": processing_ms,
            "last_updated": generated_at,
            "cache_status": "fresh",
        },
        "generated_at": generated_at,
    }

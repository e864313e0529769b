from fastapi import APIRouter
from fastapi.responses import HTMLResponse

router = APIRouter()

@router.get("/", response_class=HTMLResponse)
def home():
    return HTMLResponse("""
<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Clinic Dashboard</title>
  <meta name="viewport" content="width=device-width,initial-scale=1" />
  <style>
    body { font-family: Arial, sans-serif; margin: 0; background: #f6f7f9; }
    .bar { padding: 12px; display: flex; gap: 8px; align-items: center; border-bottom: 1px solid #ddd; background: #fff; }
    .bar h1 { flex: 1; font-size: 18px; margin: 0; }
    button { padding: 8px 14px; }
    .grid { display: grid; grid-template-columns: repeat(auto-fill, minmax(220px, 1fr)); gap: 12px; padding: 12px; }
    .card { background: #fff; border: 1px solid #ddd; padding: 10px; }
    .card .value { font-size: 26px; font-weight: bold; }
    .small { font-size: 12px; color: #444; }
    .err { color: #b00020; padding: 12px; }
    ul { padding-left: 18px; margin: 4px 0; }
  </style>
</head>
<body>
  <div class="bar">
    <h1>Clinic Dashboard</h1>
    <span class="small" id="status"></span>
    <button id="refresh">Force refresh</button>
  </div>
  <div id="content" class="grid"></div>

  <script>
    const content = document.getElementById('content');
    const status = document.getElementById('status');

    function card(title, value, extra) {
      return `<div class="card"><div class="small">${title}</div><div class="value">${value}</div>${extra || ''}</div>`;
    }

    function breakdown(obj) {
      const items = Object.entries(obj || {}).map(([k, v]) => `<li>${k}: ${v}</li>`);
      return items.length ? `<ul class="small">${items.join('')}</ul>` : '';
    }

    async function load() {
      status.textContent = 'Loading...';
      const res = await fetch('/api/dashboard/statistics');
      const body = await res.json();
      if (!res.ok) {
        const detail = body.detail || {};
        content.innerHTML = '<div class="err">' + (detail.message || detail || 'Error') + '</div>';
        status.textContent = '';
        return;
      }

      const d = body.data;
      const k = d.kpi_metrics, u = d.user_metrics, e = d.equipment_metrics;
      content.innerHTML = [
        card('Maintenance requests', k.total_maintenance_requests, breakdown(k.requests_by_priority)),
        card('Pending', k.pending_requests),
        card('In progress', k.in_progress_requests),
        card('Completed', k.completed_requests),
        card('Average cost', k.average_cost),
        card('Users', u.total_users, breakdown(u.users_by_role)),
        card('Active users', u.active_users),
        card('New users (30 days)', u.recent_registrations),
        card('Equipment', e.total_equipment, breakdown(e.equipment_by_type)),
        card('Needs maintenance', e.needs_maintenance),
        card('Critical equipment', e.critical_equipment),
        card('Recent activity', d.recent_activity.length,
             '<ul class="small">' + d.recent_activity.map(a => `<li>${a.title} (${a.user})</li>`).join('') + '</ul>'),
      ].join('');

      status.textContent = (body.cached ? 'Cached' : 'Fresh') + ' | generated ' + d.generated_at +
        ' | cache hit rate ' + body.cache_stats.hit_rate;
    }

    document.getElementById('refresh').addEventListener('click', async () => {
      await fetch('/api/dashboard/statistics/refresh', { method: 'POST' });
      load();
    });

    load();
  </script>
</body>
</html>
    """)

# plugin inventory with a health score per plugin
#
# health: 100 = enabled and current, 50 = enabled with an update pending, 0 = disabled

import csv
import dataclasses
import datetime
import io
import json
import logging
import os

import jenkins

from jenkins_ops.errors import ConfigError

logger = logging.getLogger(__name__)

FORMATS = ("table", "csv", "json")
HEADER = ["Name", "Version", "Health", "Enabled", "InstalledAt"]


@dataclasses.dataclass
class PluginRow:
  id: str
  name: str
  version: str
  health: int
  enabled: bool
  installed_at: str = ""


def health_score(enabled, has_update):
  if not enabled:
    return 0
  return 50 if has_update else 100


def installed_at(plugins_dir, plugin_id):
  # newest mtime of the archive or exploded dir, best-effort
  if not plugins_dir:
    return ""
  best = None
  for candidate in (plugin_id + ".jpi", plugin_id + ".hpi", plugin_id):
    try:
      mtime = os.stat(os.path.join(plugins_dir, candidate)).st_mtime
    except OSError:
      continue
    if best is None or mtime > best:
      best = mtime
  if best is None:
    return ""
  return datetime.datetime.fromtimestamp(best).astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def connect(url, username=None, token=None, timeout=20):
  return jenkins.Jenkins(url, username=username or None, password=token or None, timeout=timeout)


def fetch_plugins(server, plugins_dir=None):
  if plugins_dir and not os.path.isdir(plugins_dir):
    logger.warning("plugins dir not found: {} (InstalledAt will be blank)".format(plugins_dir))
    plugins_dir = None
  rows = []
  for info in server.get_plugins_info(depth=1) or []:
    plugin_id = info.get("shortName")
    enabled = bool(info.get("enabled", True))
    rows.append(PluginRow(
      id=plugin_id,
      name=info.get("longName") or plugin_id,
      version=info.get("version") or "unknown",
      health=health_score(enabled, bool(info.get("hasUpdate"))),
      enabled=enabled,
      installed_at=installed_at(plugins_dir, plugin_id),
    ))
  rows.sort(key=lambda row: row.id)
  return rows


def _cells(row):
  return [row.name, row.version, str(row.health), "true" if row.enabled else "false", row.installed_at]


def render_table(rows, header=True):
  lines = ([HEADER] if header else []) + [_cells(row) for row in rows]
  if not lines:
    return ""
  widths = [max(len(line[i]) for line in lines) for i in range(len(HEADER))]
  return "\n".join("  ".join(cell.ljust(width) for cell, width in zip(line, widths)).rstrip() for line in lines)


def render_csv(rows, header=True):
  out = io.StringIO()
  writer = csv.writer(out, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
  if header:
    writer.writerow(HEADER)
  for row in rows:
    writer.writerow([row.name, row.version, row.health, "true" if row.enabled else "false", row.installed_at])
  return out.getvalue().rstrip("\n")


def render_json(rows):
  return json.dumps([
    {"Name": row.name, "Version": row.version, "Health": row.health,
     "Enabled": row.enabled, "InstalledAt": row.installed_at}
    for row in rows
  ], indent=2)


def render(rows, fmt="table", header=True):
  if fmt == "table":
    return render_table(rows, header)
  if fmt == "csv":
    return render_csv(rows, header)
  if fmt == "json":
    return render_json(rows)
  raise ConfigError("unknown format: {}".format(fmt))

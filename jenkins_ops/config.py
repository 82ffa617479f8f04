# resolved settings for backup/restore
#
# built once at startup: defaults -> environment -> command line flags

import dataclasses
import os
import re

from jenkins_ops.errors import ConfigError

DEFAULT_JENKINS_HOME = "/var/lib/jenkins"
DEFAULT_SERVICE_FILE = "/etc/systemd/system/jenkins.service"
DEFAULT_ETC_DEFAULT = "/etc/default/jenkins"
WAR_CANDIDATES = [
  "/usr/share/java/jenkins.war",
  "/opt/jenkins/jenkins.war",
  "/usr/lib/jenkins/jenkins.war",
]

# environment variable -> (field, converter)
ENV_MAP = {
  "JENKINS_HOME": ("jenkins_home", str),
  "WAR_PATH": ("war_path", str),
  "BACKUP_DIR": ("backup_dir", str),
  "KEEP": ("keep", int),
  "TMP_DIR": ("tmp_dir", str),
  "JAVA_BIN": ("java_bin", str),
  "JAVA_PKG": ("java_pkg", str),
  "WAR_DST": ("war_dst", str),
  "HEALTH_URL": ("health_url", str),
  "TIMEOUT": ("health_timeout", float),
  "JENKINS_URL": ("jenkins_url", str),
  "JENKINS_USER": ("jenkins_user", str),
  "JENKINS_API_TOKEN": ("jenkins_token", str),
}


@dataclasses.dataclass
class Config:
  jenkins_home: str = DEFAULT_JENKINS_HOME
  war_path: str = ""
  backup_dir: str = "/var/backups/jenkins"
  keep: int = 7
  tmp_dir: str = "/tmp/jenkins-ops"
  java_bin: str = "/usr/bin/java"
  java_pkg: str = "openjdk-17-jre-headless"
  war_dst: str = "/opt/jenkins/jenkins.war"
  service_name: str = "jenkins"
  service_file: str = DEFAULT_SERVICE_FILE
  service_user: str = "jenkins"
  archive_root: str = "/"
  health_url: str = "http://127.0.0.1:8080/login"
  health_timeout: float = 120
  health_interval: float = 3
  request_timeout: float = 5
  jenkins_url: str = ""
  jenkins_user: str = ""
  jenkins_token: str = ""
  quiesce: bool = False
  require_root: bool = True

  def validate(self):
    if self.keep < 1:
      raise ConfigError("keep must be at least 1, got {}".format(self.keep))
    for name in ("health_timeout", "health_interval", "request_timeout"):
      if getattr(self, name) <= 0:
        raise ConfigError("{} must be positive".format(name))
    if self.quiesce and not (self.jenkins_url and self.jenkins_user and self.jenkins_token):
      raise ConfigError("quiesce requires JENKINS_URL, JENKINS_USER and JENKINS_API_TOKEN")
    return self

  def describe(self):
    lines = [
      "Resolved configuration:",
      "  JENKINS_HOME : {}".format(self.jenkins_home),
      "  WAR_PATH     : {}".format(self.war_path or "<not found>"),
      "  BACKUP_DIR   : {}".format(self.backup_dir),
      "  KEEP         : {}".format(self.keep),
      "  TMP_DIR      : {}".format(self.tmp_dir),
      "  JAVA_BIN     : {}".format(self.java_bin),
      "  QUIESCE      : {}".format("yes" if self.quiesce else "no"),
    ]
    if self.quiesce:
      lines.append("  JENKINS_URL  : {}".format(self.jenkins_url or "<unset>"))
      lines.append("  JENKINS_USER : {}".format(self.jenkins_user or "<unset>"))
      lines.append("  TOKEN set?   : {}".format("yes" if self.jenkins_token else "no"))
    return "\n".join(lines)


def _home_from_file(path, pattern):
  if not os.path.isfile(path):
    return None
  found = None
  with open(path, "r") as f:
    for line in f:
      match = pattern.search(line)
      if match:
        found = match.group(1).strip('"')
  return found


UNIT_HOME_RE = re.compile(r'Environment=.*JENKINS_HOME=([^" ]+)')
DEFAULT_HOME_RE = re.compile(r'^JENKINS_HOME=(\S+)')


def detect_jenkins_home(current, service_file=DEFAULT_SERVICE_FILE, etc_default=DEFAULT_ETC_DEFAULT):
  # env -> systemd unit -> /etc/default -> as given
  if os.path.isdir(current):
    return current
  for path, pattern in ((service_file, UNIT_HOME_RE), (etc_default, DEFAULT_HOME_RE)):
    candidate = _home_from_file(path, pattern)
    if candidate and os.path.isdir(candidate):
      return candidate
  return current


def detect_war(current, candidates=None):
  if current and os.path.isfile(current):
    return current
  for candidate in candidates if candidates is not None else WAR_CANDIDATES:
    if os.path.isfile(candidate):
      return candidate
  return ""


def load_config(overrides=None, environ=None, detect=True):
  if environ is None:
    environ = os.environ
  values = {}
  for key, (field, convert) in ENV_MAP.items():
    raw = environ.get(key)
    if raw is None or raw == "":
      continue
    try:
      values[field] = convert(raw)
    except ValueError:
      raise ConfigError("invalid value for {}: {!r}".format(key, raw))
  for field, value in (overrides or {}).items():
    if value is not None:
      values[field] = value

  known = {f.name for f in dataclasses.fields(Config)}
  unknown = set(values) - known
  if unknown:
    raise ConfigError("unknown settings: {}".format(", ".join(sorted(unknown))))

  config = Config(**values)
  if detect:
    config.jenkins_home = detect_jenkins_home(config.jenkins_home, config.service_file)
    config.war_path = detect_war(config.war_path)
  return config.validate()

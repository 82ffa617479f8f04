# on-disk layout of a backup bundle, its naming and retention

import dataclasses
import datetime
import glob
import logging
import os

from jenkins_ops.digest import DIGEST_SUFFIX, digest_path

logger = logging.getLogger(__name__)

BUNDLE_PREFIX = "jenkins-backup-"
BUNDLE_SUFFIX = ".tar.gz"
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"

METADATA = "METADATA"
PLUGINS_MANIFEST = "plugins.txt"
PAYLOAD_DIR = "payload"
WAR_MEMBER = "payload/jenkins.war"
UNIT_MEMBER = "payload/jenkins.service"
STATE_MEMBER = "jenkins_home.tar"

# cross-device copies are written as .<bundle name>.partial, then renamed
PARTIAL_SUFFIX = ".partial"


@dataclasses.dataclass
class Bundle:
  """One point-in-time snapshot; only the state archive member is mandatory."""
  path: str
  timestamp: str
  jenkins_home: str
  war_path: str = ""
  unit_path: str = ""
  plugins: list = dataclasses.field(default_factory=list)
  metadata: dict = dataclasses.field(default_factory=dict)

  @property
  def name(self):
    return os.path.basename(self.path)

  @property
  def digest_path(self):
    return digest_path(self.path)


def timestamp(now=None):
  now = now or datetime.datetime.now(datetime.timezone.utc)
  return now.astimezone(datetime.timezone.utc).strftime(TIMESTAMP_FORMAT)


def bundle_name(ts):
  return "{}{}{}".format(BUNDLE_PREFIX, ts, BUNDLE_SUFFIX)


def write_metadata(path, record):
  with open(path, "w") as f:
    for key, value in record.items():
      f.write("{}={}\n".format(key, value))


def read_metadata(path):
  record = {}
  with open(path, "r") as f:
    for line in f:
      line = line.rstrip("\n")
      if "=" not in line:
        continue
      key, value = line.split("=", 1)
      record[key] = value
  return record


def plugin_version(plugin_dir):
  manifest = os.path.join(plugin_dir, "META-INF", "MANIFEST.MF")
  if not os.path.isfile(manifest):
    return "unknown"
  with open(manifest, "r", errors="replace") as f:
    for line in f:
      if line.lower().startswith("plugin-version:"):
        return line.split(":", 1)[1].strip()
  return "unknown"


def collect_plugins(jenkins_home):
  """Return sorted (name, version) pairs for the exploded plugins in JENKINS_HOME."""
  plugins_dir = os.path.join(jenkins_home, "plugins")
  if not os.path.isdir(plugins_dir):
    return None
  plugins = []
  for entry in sorted(os.scandir(plugins_dir), key=lambda e: e.name):
    if entry.is_dir():
      plugins.append((entry.name, plugin_version(entry.path)))
  return plugins


def write_plugins(path, plugins):
  with open(path, "w") as f:
    for name, version in plugins:
      f.write("{}:{}\n".format(name, version))


def list_bundles(backup_dir):
  # timestamp-prefixed names sort in creation order, newest last
  pattern = os.path.join(backup_dir, "{}*{}".format(BUNDLE_PREFIX, BUNDLE_SUFFIX))
  return sorted(glob.glob(pattern))


def prune(backup_dir, keep):
  """Delete all but the newest `keep` bundles along with their digests."""
  bundles = list_bundles(backup_dir)
  doomed = bundles[:-keep] if keep > 0 else bundles
  for path in doomed:
    logger.info("pruning {}".format(os.path.basename(path)))
    os.unlink(path)
    sidecar = digest_path(path)
    if os.path.exists(sidecar):
      os.unlink(sidecar)
  # digests whose bundle is already gone
  for sidecar in glob.glob(os.path.join(backup_dir, "{}*{}{}".format(BUNDLE_PREFIX, BUNDLE_SUFFIX, DIGEST_SUFFIX))):
    if not os.path.exists(sidecar[:-len(DIGEST_SUFFIX)]):
      os.unlink(sidecar)
  # copies a killed run left half-written
  for partial in glob.glob(os.path.join(backup_dir, ".{}*{}".format(BUNDLE_PREFIX, PARTIAL_SUFFIX))):
    os.unlink(partial)
  return doomed


def partial_path(dest):
  return os.path.join(os.path.dirname(dest), ".{}{}".format(os.path.basename(dest), PARTIAL_SUFFIX))

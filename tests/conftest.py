import datetime
import os
import subprocess
import tarfile

import pytest

from jenkins_ops.config import Config
from jenkins_ops.host import LocalHost

EXTRACT_KWARGS = {"filter": "tar"} if hasattr(tarfile, "data_filter") else {}


class PyTarArchiver:
  # same member naming as TarArchiver, without needing GNU tar
  required_tools = ()

  def __init__(self, archive_root):
    self.archive_root = str(archive_root)

  def archive_tree(self, root, dest):
    with tarfile.open(dest, "w") as tar:
      tar.add(str(root), arcname=os.path.relpath(str(root), self.archive_root))
    return dest

  def extract_tree(self, archive, dest_root=None):
    with tarfile.open(archive) as tar:
      tar.extractall(dest_root or self.archive_root, **EXTRACT_KWARGS)


class FailingArchiver(PyTarArchiver):

  def archive_tree(self, root, dest):
    with open(dest, "wb") as f:
      f.write(b"half an archive")
    raise subprocess.CalledProcessError(2, ["tar"])


class FakeService:

  def __init__(self):
    self.calls = []

  def stop(self):
    self.calls.append("stop")

  def start(self):
    self.calls.append("start")


class FakeHealth:

  def __init__(self, healthy=True):
    self.healthy = healthy
    self.calls = 0

  def wait_healthy(self):
    self.calls += 1
    return self.healthy


class FakeHost(LocalHost):
  """Real file copies, no user management, chown or package installs."""

  def __init__(self):
    super().__init__()
    self.calls = []

  def ensure_identity(self, user, home):
    self.calls.append(("ensure_identity", user))
    return False

  def fix_ownership(self, path, user):
    self.calls.append(("fix_ownership", str(path), user))

  def ensure_runtime(self):
    self.calls.append(("ensure_runtime",))
    return False


class TickingClock:

  def __init__(self, start=datetime.datetime(2024, 5, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)):
    self.now = start

  def __call__(self):
    current = self.now
    self.now += datetime.timedelta(seconds=1)
    return current


def fake_runner(params, **kwargs):
  return subprocess.CompletedProcess(params, 0, stdout="2.440.3\n")


def read_tree(path):
  """Map of relative path -> file bytes (or a marker for dirs/links)."""
  tree = {}
  for root, dirs, files in os.walk(path):
    for name in dirs:
      full = os.path.join(root, name)
      tree[os.path.relpath(full, path)] = "<link>" if os.path.islink(full) else "<dir>"
    for name in files:
      full = os.path.join(root, name)
      with open(full, "rb") as f:
        tree[os.path.relpath(full, path)] = f.read()
  return tree


@pytest.fixture
def config(tmp_path):
  home = tmp_path / "var" / "lib" / "jenkins"
  home.mkdir(parents=True)
  return Config(
    jenkins_home=str(home),
    backup_dir=str(tmp_path / "backups"),
    tmp_dir=str(tmp_path / "work"),
    keep=2,
    service_file=str(tmp_path / "etc" / "jenkins.service"),
    war_dst=str(tmp_path / "opt" / "jenkins" / "jenkins.war"),
    archive_root=str(tmp_path),
    health_timeout=5,
    require_root=False,
  )


@pytest.fixture
def jenkins_home(config):
  home = config.jenkins_home
  with open(os.path.join(home, "config.xml"), "w") as f:
    f.write("<hudson><numExecutors>2</numExecutors></hudson>\n")
  os.makedirs(os.path.join(home, "jobs", "deploy"))
  with open(os.path.join(home, "jobs", "deploy", "config.xml"), "w") as f:
    f.write("<flow-definition/>\n")
  os.makedirs(os.path.join(home, "plugins", "git", "META-INF"))
  with open(os.path.join(home, "plugins", "git", "META-INF", "MANIFEST.MF"), "w") as f:
    f.write("Manifest-Version: 1.0\r\nPlugin-Version: 5.2.1\r\n")
  os.makedirs(os.path.join(home, "plugins", "credentials"))
  return home

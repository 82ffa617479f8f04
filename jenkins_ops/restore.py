# restores jenkins from a backup bundle
#
# VERIFY -> STOP -> SNAPSHOT -> EXTRACT -> REPLACE -> RESTORE_ANCILLARY -> START
#   -> HEALTH_CHECK -> DONE, or ROLLBACK -> DONE_WITH_ROLLBACK
#
# nothing destructive happens before the safety copy exists. once REPLACE has
# started every failure puts the safety copy back.

import contextlib
import dataclasses
import enum
import logging
import os
import shutil
import subprocess
import tarfile

from jenkins_ops import bundle as layout
from jenkins_ops.archive import TarArchiver, unpack_bundle
from jenkins_ops.digest import Sha256Digest, digest_path
from jenkins_ops.errors import (IntegrityError, JenkinsOpsError, PipelineError, PreconditionError,
                                RestoreFailed, RollbackFailed)
from jenkins_ops.host import LocalHost, is_root, missing_tools

logger = logging.getLogger(__name__)

# what a failing external step looks like
STEP_ERRORS = (OSError, shutil.Error, subprocess.CalledProcessError, tarfile.TarError, PipelineError)


class RestoreState(enum.Enum):
  VERIFY = "verify"
  STOP = "stop"
  SNAPSHOT = "snapshot"
  EXTRACT = "extract"
  REPLACE = "replace"
  RESTORE_ANCILLARY = "restore_ancillary"
  START = "start"
  HEALTH_CHECK = "health_check"
  DONE = "done"
  ROLLBACK = "rollback"
  DONE_WITH_ROLLBACK = "done_with_rollback"


# states after which live state may have been modified
DESTRUCTIVE = (RestoreState.REPLACE, RestoreState.RESTORE_ANCILLARY, RestoreState.START,
               RestoreState.HEALTH_CHECK)


def safety_path_for(jenkins_home, ts):
  return "{}.RECOVER-{}".format(str(jenkins_home).rstrip("/"), ts)


@contextlib.contextmanager
def scratch_dir(path):
  os.makedirs(path)
  try:
    yield path
  finally:
    shutil.rmtree(path, ignore_errors=True)


@dataclasses.dataclass
class RestoreResult:
  bundle_path: str
  safety_path: str = ""
  state: RestoreState = RestoreState.VERIFY
  history: list = dataclasses.field(default_factory=list)


class RestoreExecutor:

  def __init__(self, config, service, health, host=None, archiver=None, digest=None, clock=None):
    self.config = config
    self.service = service
    self.health = health
    self.host = host or LocalHost(config.java_bin, config.java_pkg)
    self.archiver = archiver or TarArchiver(config.archive_root)
    self.digest = digest or Sha256Digest()
    self.clock = clock
    self.result = None

  def _enter(self, state):
    self.result.state = state
    self.result.history.append(state)
    logger.debug("restore state -> {}".format(state.value))

  def check_requirements(self, bundle_path):
    if not os.path.isfile(bundle_path):
      raise PreconditionError("backup bundle not found: {}".format(bundle_path))
    if self.config.require_root and not is_root():
      raise PreconditionError("please run as root, restore changes ownership and system files")
    missing = missing_tools(*self.archiver.required_tools)
    if missing:
      raise PreconditionError("missing required tool: {}".format(", ".join(missing)))

  def run(self, bundle_path):
    bundle_path = str(bundle_path)
    self.check_requirements(bundle_path)
    ts = layout.timestamp(self.clock() if self.clock else None)
    home = self.config.jenkins_home
    self.result = RestoreResult(bundle_path=bundle_path, safety_path=safety_path_for(home, ts))
    if os.path.exists(self.result.safety_path):
      raise PreconditionError("safety copy path already exists: {}".format(self.result.safety_path))

    self._enter(RestoreState.VERIFY)
    self.verify(bundle_path)

    os.makedirs(self.config.tmp_dir, exist_ok=True)
    with scratch_dir(os.path.join(self.config.tmp_dir, "restore-{}".format(ts))) as work:
      try:
        self._enter(RestoreState.STOP)
        logger.info("stopping jenkins...")
        self.service.stop()

        self._enter(RestoreState.SNAPSHOT)
        self.snapshot(home, self.result.safety_path)

        self._enter(RestoreState.EXTRACT)
        self.extract(bundle_path, work)

        self._enter(RestoreState.REPLACE)
        self.replace(home, work)

        self._enter(RestoreState.RESTORE_ANCILLARY)
        self.restore_ancillary(work)

        self._enter(RestoreState.START)
        self.host.ensure_runtime()
        logger.info("starting jenkins...")
        self.service.start()

        self._enter(RestoreState.HEALTH_CHECK)
        if not self.health.wait_healthy():
          raise PipelineError("jenkins did not become healthy within {}s".format(self.config.health_timeout))
      except STEP_ERRORS as e:
        if self.result.state not in DESTRUCTIVE:
          self._abort(e)
          if isinstance(e, JenkinsOpsError):
            raise
          raise PipelineError("restore failed during {}: {}".format(self.result.state.value, e)) from e
        logger.error("{} failed: {}".format(self.result.state.value, e))
        self.rollback(home, self.result.safety_path)
        raise RestoreFailed(
          "rolled back to {}. investigate /var/log/syslog and {}/logs".format(self.result.safety_path, home),
          self.result.safety_path) from e

    self._enter(RestoreState.DONE)
    logger.info("restore complete")
    logger.info("leaving safety copy at {} (clean it up once you're confident)".format(self.result.safety_path))
    return self.result

  def _abort(self, error):
    # live state is untouched, bring the service back the way we found it
    logger.error("restore aborted during {}: {}".format(self.result.state.value, error))
    try:
      self.service.start()
    except STEP_ERRORS as e:
      logger.warning("could not restart jenkins after abort: {}".format(e))

  def verify(self, bundle_path):
    sidecar = digest_path(bundle_path)
    if not os.path.isfile(sidecar):
      logger.warning("no .sha256 file found, skipping checksum verification")
      return False
    logger.info("verifying checksum...")
    if not self.digest.verify(bundle_path, sidecar):
      raise IntegrityError("checksum verification failed for {}".format(bundle_path))
    return True

  def snapshot(self, home, safety):
    logger.info("creating safety copy: {}".format(safety))
    try:
      os.makedirs(home, exist_ok=True)
      self.host.copy_tree(home, safety)
    except STEP_ERRORS as e:
      raise PipelineError("could not create safety copy {}: {}".format(safety, e)) from e

  def extract(self, bundle_path, work):
    logger.info("extracting bundle to temp...")
    try:
      unpack_bundle(bundle_path, work)
    except (OSError, tarfile.TarError) as e:
      raise PipelineError("could not extract {}: {}".format(bundle_path, e)) from e
    if not os.path.isfile(os.path.join(work, layout.STATE_MEMBER)):
      raise PipelineError("backup missing {}".format(layout.STATE_MEMBER))
    if not os.path.isfile(os.path.join(work, layout.METADATA)):
      logger.warning("METADATA missing (continuing)")
    else:
      record = layout.read_metadata(os.path.join(work, layout.METADATA))
      logger.info("bundle taken {} on {}".format(record.get("timestamp", "?"), record.get("hostname", "?")))

  def replace(self, home, work):
    logger.info("restoring JENKINS_HOME...")
    user = self.config.service_user
    self.host.ensure_identity(user, home)
    os.makedirs(home, exist_ok=True)
    self.host.clear_dir(home)
    self.archiver.extract_tree(os.path.join(work, layout.STATE_MEMBER))
    self.host.fix_ownership(home, user)

  def restore_ancillary(self, work):
    unit = os.path.join(work, layout.UNIT_MEMBER)
    if os.path.isfile(unit):
      logger.info("restoring systemd unit...")
      self.host.install_file(unit, self.config.service_file)
    war = os.path.join(work, layout.WAR_MEMBER)
    if os.path.isfile(war):
      logger.info("restoring WAR to {}...".format(self.config.war_dst))
      self.host.install_file(war, self.config.war_dst)

  def rollback(self, home, safety):
    self._enter(RestoreState.ROLLBACK)
    logger.error("rolling back from {}...".format(safety))
    try:
      self.service.stop()
      self.host.copy_tree(safety, home)
    except (STEP_ERRORS + (JenkinsOpsError,)) as e:
      raise RollbackFailed(
        "ROLLBACK FAILED, {} may be neither the old nor the new state, safety copy is at {}: {}".format(
          home, safety, e), safety) from e
    self._enter(RestoreState.DONE_WITH_ROLLBACK)
    try:
      self.service.start()
    except (STEP_ERRORS + (JenkinsOpsError,)) as e:
      raise RestoreFailed(
        "rolled back to {} but jenkins did not start: {}".format(safety, e), safety) from e

# creates a versioned, checksummed backup bundle of a WAR-mode jenkins
#
# the bundle and its .sha256 only show up in the backup directory once both
# are complete; a run that dies earlier leaves nothing behind there

import logging
import os
import shutil
import socket
import subprocess
import tarfile

import filelock

from jenkins_ops import bundle as layout
from jenkins_ops.archive import TarArchiver, pack_bundle
from jenkins_ops.digest import Sha256Digest, digest_path
from jenkins_ops.errors import LockedError, PipelineError, PreconditionError
from jenkins_ops.host import is_root, missing_tools
from jenkins_ops.service import NullQuiescer

logger = logging.getLogger(__name__)

LOCK_NAME = "backup.lock"


def first_line(params, runner=subprocess.run):
  try:
    result = runner(params, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, timeout=120)
  except (OSError, subprocess.SubprocessError) as e:
    logger.debug("{} failed: {}".format(params[0], e))
    return "unknown"
  lines = (result.stdout or "").strip().splitlines()
  return lines[0].strip() if lines else "unknown"


def publish(src, dest):
  # never expose a half-copied file under its final name
  try:
    os.replace(src, dest)
    return dest
  except OSError as e:
    logger.debug("rename to {} failed ({}), copying instead".format(dest, e))
  partial = layout.partial_path(dest)
  try:
    shutil.copy2(src, partial)
    os.replace(partial, dest)
  except OSError:
    if os.path.lexists(partial):
      os.unlink(partial)
    raise
  os.unlink(src)
  return dest


class BackupProducer:

  def __init__(self, config, archiver=None, digest=None, quiescer=None, runner=subprocess.run, clock=None):
    self.config = config
    self.archiver = archiver or TarArchiver(config.archive_root)
    self.digest = digest or Sha256Digest()
    self.quiescer = quiescer or NullQuiescer()
    self.runner = runner
    self.clock = clock

  def check_requirements(self):
    if self.config.require_root and not is_root():
      raise PreconditionError("please run as root, it is required to read secrets and preserve ownership")
    missing = missing_tools(*self.archiver.required_tools)
    if missing:
      raise PreconditionError("missing required tool: {}".format(", ".join(missing)))

  def preflight(self):
    home = self.config.jenkins_home
    if not os.path.isdir(home):
      raise PreconditionError("JENKINS_HOME not found: {}".format(home))
    if not os.access(os.path.join(home, "config.xml"), os.R_OK):
      logger.warning("no config.xml readable under {} (still proceeding)".format(home))
    if not os.path.isdir(os.path.join(home, "secrets")):
      logger.warning("no secrets/ dir visible (check perms)")
    war = self.config.war_path
    if war:
      if not os.access(war, os.R_OK):
        raise PreconditionError("WAR not readable: {}".format(war))
    else:
      logger.warning("WAR not found, backup continues but restore won't carry a WAR")

    # want ~1.2x the size of JENKINS_HOME plus some headroom
    need = int(tree_size(home) * 1.2) + 100 * 1024 * 1024
    free = shutil.disk_usage(self.config.backup_dir).free
    if free < need:
      logger.warning("low free space in {} (need ~{} bytes, have {})".format(self.config.backup_dir, need, free))

  def members(self, has_plugins=True):
    members = [layout.METADATA]
    if has_plugins:
      members.append(layout.PLUGINS_MANIFEST)
    if self.config.war_path and os.path.isfile(self.config.war_path):
      members.append(layout.WAR_MEMBER)
    if self.config.service_file and os.path.isfile(self.config.service_file):
      members.append(layout.UNIT_MEMBER)
    members.append(layout.STATE_MEMBER)
    return members

  def metadata(self, ts, has_plugins):
    war = self.config.war_path if self.config.war_path and os.path.isfile(self.config.war_path) else ""
    record = {
      "timestamp": ts,
      "jenkins_home": self.config.jenkins_home,
      "jenkins_war": war or "<missing>",
      "jenkins_version": first_line([self.config.java_bin, "-jar", war, "--version"], self.runner) if war else "unknown",
      "java_version": first_line([self.config.java_bin, "-version"], self.runner),
      "hostname": socket.getfqdn(),
    }
    if has_plugins:
      record["plugins_manifest"] = layout.PLUGINS_MANIFEST
    return record

  def stage(self, work, ts):
    home = self.config.jenkins_home
    logger.info("collecting metadata...")
    plugins = layout.collect_plugins(home)
    if plugins is not None:
      layout.write_plugins(os.path.join(work, layout.PLUGINS_MANIFEST), plugins)

    logger.info("staging payload...")
    os.makedirs(os.path.join(work, layout.PAYLOAD_DIR), exist_ok=True)
    members = self.members(has_plugins=plugins is not None)
    if layout.WAR_MEMBER in members:
      shutil.copyfile(self.config.war_path, os.path.join(work, layout.WAR_MEMBER))
      os.chmod(os.path.join(work, layout.WAR_MEMBER), 0o644)
    else:
      logger.warning("skipping WAR copy (not found)")
    if layout.UNIT_MEMBER in members:
      shutil.copyfile(self.config.service_file, os.path.join(work, layout.UNIT_MEMBER))
      os.chmod(os.path.join(work, layout.UNIT_MEMBER), 0o644)

    record = self.metadata(ts, has_plugins=plugins is not None)
    layout.write_metadata(os.path.join(work, layout.METADATA), record)

    logger.info("archiving JENKINS_HOME (this can take a minute)...")
    self.archiver.archive_tree(home, os.path.join(work, layout.STATE_MEMBER))

    return layout.Bundle(
      path="",
      timestamp=ts,
      jenkins_home=home,
      war_path=self.config.war_path if layout.WAR_MEMBER in members else "",
      unit_path=self.config.service_file if layout.UNIT_MEMBER in members else "",
      plugins=plugins or [],
      metadata=record,
    )

  def check(self):
    # sanity checks only: privileges, tools, paths, free space
    self.check_requirements()
    os.makedirs(self.config.backup_dir, exist_ok=True)
    self.preflight()
    logger.info("preflight OK")

  def run(self, dry_run=False):
    self.check_requirements()
    os.makedirs(self.config.backup_dir, exist_ok=True)
    os.makedirs(self.config.tmp_dir, exist_ok=True)

    lock_path = os.path.join(self.config.tmp_dir, LOCK_NAME)
    lock = filelock.FileLock(lock_path)
    try:
      lock.acquire(timeout=0)
    except filelock.Timeout:
      raise LockedError("another backup appears to be running (lock: {})".format(lock_path))
    try:
      return self._run_locked(dry_run)
    finally:
      lock.release()

  def _run_locked(self, dry_run):
    self.preflight()
    ts = layout.timestamp(self.clock() if self.clock else None)
    name = layout.bundle_name(ts)
    dest = os.path.join(self.config.backup_dir, name)

    logger.info("backing up jenkins...")
    for line in self.config.describe().splitlines():
      logger.info(line)

    if os.path.exists(dest):
      raise PipelineError("{} already exists, refusing to overwrite".format(dest))

    if dry_run:
      logger.info("[DRY-RUN] would create {} with:".format(dest))
      has_plugins = os.path.isdir(os.path.join(self.config.jenkins_home, "plugins"))
      for member in self.members(has_plugins):
        logger.info("  - {}".format(member))
      return None

    work = os.path.join(self.config.tmp_dir, "bundle-{}".format(ts))
    os.makedirs(work)
    self.quiescer.quiesce()
    try:
      try:
        result = self.stage(work, ts)
        logger.info("creating compressed bundle...")
        packed = [layout.METADATA, layout.PAYLOAD_DIR, layout.STATE_MEMBER]
        if "plugins_manifest" in result.metadata:
          packed.insert(1, layout.PLUGINS_MANIFEST)
        staged = pack_bundle(work, packed, os.path.join(work, name))
        # digest only once the payload is complete
        staged_digest = self.digest.write(staged)
      except (OSError, subprocess.CalledProcessError, tarfile.TarError) as e:
        raise PipelineError("backup failed while staging: {}".format(e)) from e

      try:
        publish(staged, dest)
      except OSError as e:
        raise PipelineError("could not publish {}: {}".format(dest, e)) from e
      try:
        publish(staged_digest, digest_path(dest))
      except OSError as e:
        # no bundle without its digest
        os.unlink(dest)
        raise PipelineError("could not publish {}: {}".format(digest_path(dest), e)) from e
    finally:
      self.quiescer.resume()
      shutil.rmtree(work, ignore_errors=True)

    result.path = dest
    logger.info("pruning old backups (keep {})...".format(self.config.keep))
    try:
      layout.prune(self.config.backup_dir, self.config.keep)
    except OSError as e:
      raise PipelineError("{} was written but pruning failed: {}".format(dest, e)) from e
    try:
      os.chmod(self.config.backup_dir, 0o700)
    except OSError as e:
      logger.warning("could not tighten perms on {}: {}".format(self.config.backup_dir, e))
    logger.info("SUCCESS: {}".format(dest))
    return result


def tree_size(path):
  total = 0
  for root, dirs, files in os.walk(path):
    for name in files:
      try:
        total += os.lstat(os.path.join(root, name)).st_size
      except OSError:
        pass
  return total

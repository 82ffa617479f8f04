# privileged filesystem and package operations on the jenkins host

import logging
import os
import pwd
import shutil
import subprocess

logger = logging.getLogger(__name__)


def is_root():
  return os.geteuid() == 0


def missing_tools(*tools):
  return [tool for tool in tools if shutil.which(tool) is None]


def clear_dir(path):
  # remove every direct child, keep the directory itself
  for entry in os.scandir(path):
    if entry.is_dir(follow_symlinks=False):
      shutil.rmtree(entry.path)
    else:
      os.unlink(entry.path)


def copy_tree(src, dst):
  """Make dst an exact copy of src (delete-then-copy, never a merge)."""
  src = str(src).rstrip("/")
  dst = str(dst).rstrip("/")
  if shutil.which("rsync"):
    os.makedirs(dst, exist_ok=True)
    try:
      subprocess.run(["rsync", "-aHAX", "--delete", src + "/", dst + "/"], check=True)
    except subprocess.CalledProcessError:
      # no ACL/xattr support on one side, plain archive mode still keeps owners
      logger.warning("rsync -aHAX failed, retrying without ACLs/xattrs")
      subprocess.run(["rsync", "-a", "--delete", src + "/", dst + "/"], check=True)
    return dst
  if os.path.isdir(dst):
    clear_dir(dst)
  shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)
  copy_owners(src, dst)
  return dst


def copy_owners(src, dst):
  # copytree keeps modes, times and xattrs but not uid/gid
  for root, dirs, files in os.walk(src):
    for path in [root] + [os.path.join(root, name) for name in dirs + files]:
      st = os.lstat(path)
      target = os.path.join(dst, os.path.relpath(path, src))
      os.chown(target, st.st_uid, st.st_gid, follow_symlinks=False)


class LocalHost:

  def __init__(self, java_bin="/usr/bin/java", java_pkg="openjdk-17-jre-headless"):
    self.java_bin = java_bin
    self.java_pkg = java_pkg

  def copy_tree(self, src, dst):
    return copy_tree(src, dst)

  def clear_dir(self, path):
    clear_dir(path)

  def ensure_identity(self, user, home):
    try:
      pwd.getpwnam(user)
      return False
    except KeyError:
      pass
    logger.info("creating service user {}".format(user))
    subprocess.run(["useradd", "-r", "-m", "-d", home, "-s", "/bin/bash", user], check=True)
    return True

  def fix_ownership(self, path, user):
    subprocess.run(["chown", "-R", "{0}:{0}".format(user), str(path)], check=True)

  def install_file(self, src, dest, mode=0o644):
    os.makedirs(os.path.dirname(dest), exist_ok=True)
    shutil.copyfile(src, dest)
    os.chmod(dest, mode)

  def ensure_runtime(self):
    if shutil.which(self.java_bin) is not None:
      return False
    logger.info("installing {}...".format(self.java_pkg))
    env = dict(os.environ, DEBIAN_FRONTEND="noninteractive")
    subprocess.run(["apt-get", "update", "-y"], check=True, env=env)
    subprocess.run(["apt-get", "install", "-y", self.java_pkg], check=True, env=env)
    return True

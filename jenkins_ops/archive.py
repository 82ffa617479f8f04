# archiving of JENKINS_HOME and packaging of the backup bundle

import logging
import os
import subprocess
import tarfile

logger = logging.getLogger(__name__)

# keep numeric owners, ACLs and xattrs
PRESERVE_FLAGS = ("--xattrs", "--acls", "--selinux", "--numeric-owner")


class TarArchiver:
  """Shells out to GNU tar for the state archive.

  The archive is taken relative to `archive_root` so members keep the
  absolute path of the jenkins home (minus the leading slash) and land back
  in the same place when extracted against the same root.
  """

  def __init__(self, archive_root="/", flags=PRESERVE_FLAGS, tar_bin="tar"):
    self.archive_root = archive_root
    self.flags = list(flags)
    self.tar_bin = tar_bin
    self.required_tools = (tar_bin,)

  def member_name(self, path):
    return os.path.relpath(os.path.abspath(path), self.archive_root)

  def archive_tree(self, root, dest):
    params = [self.tar_bin] + self.flags + ["-C", self.archive_root, "-cpf", str(dest), self.member_name(root)]
    logger.debug("running {}".format(" ".join(params)))
    subprocess.run(params, check=True)
    return dest

  def extract_tree(self, archive, dest_root=None):
    dest_root = dest_root or self.archive_root
    params = [self.tar_bin] + self.flags + ["-C", str(dest_root), "-xpf", str(archive)]
    logger.debug("running {}".format(" ".join(params)))
    subprocess.run(params, check=True)


def pack_bundle(workdir, members, dest):
  # members are paths relative to workdir; missing optional ones were never staged
  with tarfile.open(dest, "w:gz") as tar:
    for member in members:
      tar.add(os.path.join(workdir, member), arcname=member)
  return dest


def unpack_bundle(bundle_path, workdir):
  with tarfile.open(bundle_path, "r:gz") as tar:
    for member in tar.getmembers():
      if member.name.startswith("/") or ".." in member.name.split("/"):
        raise tarfile.TarError("unsafe member in bundle: {}".format(member.name))
    if hasattr(tarfile, "data_filter"):
      tar.extractall(workdir, filter="data")
    else:
      tar.extractall(workdir)
  return workdir

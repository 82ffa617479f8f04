# sha256 sidecar files, same format sha256sum writes and `sha256sum -c` reads

import hashlib
import logging
import os

logger = logging.getLogger(__name__)

DIGEST_SUFFIX = ".sha256"
CHUNK_SIZE = 1024 * 1024


def digest_path(bundle_path):
  return str(bundle_path) + DIGEST_SUFFIX


def sha256_file(path):
  h = hashlib.sha256()
  with open(path, "rb") as f:
    for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
      h.update(chunk)
  return h.hexdigest()


def parse_digest_line(line):
  # "<hex>  <name>" or "<hex> *<name>" (binary mode)
  parts = line.strip().split(None, 1)
  if len(parts) != 2 or len(parts[0]) != 64:
    return None, None
  return parts[0].lower(), parts[1].lstrip("*")


class Sha256Digest:
  """Writes and checks the detached digest of a bundle file."""

  def write(self, bundle_path, dest=None):
    dest = dest or digest_path(bundle_path)
    line = "{}  {}\n".format(sha256_file(bundle_path), os.path.basename(bundle_path))
    with open(dest, "w") as f:
      f.write(line)
      f.flush()
      os.fsync(f.fileno())
    return dest

  def verify(self, bundle_path, sidecar=None):
    """Return True only if the sidecar names this bundle and the hash matches."""
    sidecar = sidecar or digest_path(bundle_path)
    try:
      with open(sidecar, "r") as f:
        expected, name = parse_digest_line(f.readline())
    except (OSError, UnicodeDecodeError) as e:
      logger.error("could not read digest file {}: {}".format(sidecar, e))
      return False
    if expected is None:
      logger.error("malformed digest file {}".format(sidecar))
      return False
    if name != os.path.basename(bundle_path):
      logger.error("digest file {} is for {}, not {}".format(sidecar, name, os.path.basename(bundle_path)))
      return False
    actual = sha256_file(bundle_path)
    if actual != expected:
      logger.error("checksum mismatch for {}: expected {} got {}".format(bundle_path, expected, actual))
      return False
    logger.info("{}: OK".format(os.path.basename(bundle_path)))
    return True

# talking to the live jenkins service: systemd for start/stop, the REST api for quiet down

import logging
import subprocess

import jenkins
import requests

from jenkins_ops.errors import PipelineError

logger = logging.getLogger(__name__)


class SystemdService:

  def __init__(self, name="jenkins", war_pattern="jenkins.war"):
    self.name = name
    self.war_pattern = war_pattern

  def stop(self):
    # already stopped is fine
    result = subprocess.run(["systemctl", "stop", self.name])
    if result.returncode != 0:
      logger.warning("systemctl stop {} exited {}".format(self.name, result.returncode))
    # best-effort kill if a rogue process remains
    subprocess.run(["pkill", "-f", self.war_pattern])

  def start(self):
    result = subprocess.run(["systemctl", "daemon-reload"])
    if result.returncode != 0:
      logger.warning("systemctl daemon-reload exited {}".format(result.returncode))
    try:
      subprocess.run(["systemctl", "start", self.name], check=True)
    except subprocess.CalledProcessError as e:
      raise PipelineError("could not start {}: {}".format(self.name, e)) from e


class JenkinsQuiescer:
  """Puts jenkins into quiet-down mode around a backup. Never fatal."""

  def __init__(self, url, username, token, timeout=10):
    self.url = url.rstrip("/")
    self.username = username
    self.token = token
    self.timeout = timeout

  def _server(self):
    return jenkins.Jenkins(self.url, username=self.username, password=self.token, timeout=self.timeout)

  def quiesce(self):
    logger.info("requesting quietDown...")
    try:
      self._server().quiet_down()
    except (jenkins.JenkinsException, requests.exceptions.RequestException) as e:
      logger.warning("quietDown request failed: {}".format(e))
      return False
    return True

  def resume(self):
    logger.info("cancelling quietDown...")
    try:
      server = self._server()
      server.jenkins_open(requests.Request("POST", self.url + "/cancelQuietDown"))
    except (jenkins.JenkinsException, requests.exceptions.RequestException) as e:
      logger.warning("cancelQuietDown failed: {}".format(e))
      return False
    return True


class NullQuiescer:

  def quiesce(self):
    return True

  def resume(self):
    return True

# readiness polling against the jenkins web ui

import logging
import time

import requests

logger = logging.getLogger(__name__)


class HttpHealthChecker:
  """GETs `url` until it answers 2xx (after redirects) or `timeout` elapses."""

  def __init__(self, url, timeout=120, interval=3, request_timeout=5, session=None,
               clock=time.monotonic, sleep=time.sleep):
    self.url = url
    self.timeout = timeout
    self.interval = interval
    self.request_timeout = request_timeout
    self.session = session or requests.Session()
    self.clock = clock
    self.sleep = sleep

  def is_healthy(self):
    try:
      response = self.session.get(self.url, timeout=self.request_timeout, allow_redirects=True)
    except requests.exceptions.RequestException as e:
      logger.debug("health check request failed: {}".format(e))
      return False
    return 200 <= response.status_code < 300

  def wait_healthy(self):
    logger.info("waiting for jenkins to become healthy at {} (timeout {}s)...".format(self.url, self.timeout))
    deadline = self.clock() + self.timeout
    while self.clock() < deadline:
      if self.is_healthy():
        logger.info("jenkins is responding")
        return True
      self.sleep(self.interval)
    return False

import subprocess
from unittest import mock

import jenkins
import pytest
import requests

from jenkins_ops.errors import PipelineError
from jenkins_ops.service import JenkinsQuiescer, SystemdService


def completed(returncode=0):
  def run(params, **kwargs):
    if kwargs.get("check") and returncode:
      raise subprocess.CalledProcessError(returncode, params)
    return subprocess.CompletedProcess(params, returncode)
  return run


@mock.patch("jenkins_ops.service.subprocess.run")
def test_stop_is_best_effort(run):
  run.side_effect = completed(5)
  SystemdService("jenkins").stop()
  assert [c.args[0] for c in run.call_args_list] == [
    ["systemctl", "stop", "jenkins"],
    ["pkill", "-f", "jenkins.war"],
  ]


@mock.patch("jenkins_ops.service.subprocess.run")
def test_start_reloads_then_starts(run):
  run.side_effect = completed(0)
  SystemdService("jenkins").start()
  assert [c.args[0] for c in run.call_args_list] == [
    ["systemctl", "daemon-reload"],
    ["systemctl", "start", "jenkins"],
  ]


@mock.patch("jenkins_ops.service.subprocess.run")
def test_failed_start_is_fatal(run):
  run.side_effect = completed(1)
  with pytest.raises(PipelineError):
    SystemdService("jenkins").start()


@mock.patch("jenkins_ops.service.jenkins.Jenkins")
def test_quiesce_and_resume(server_cls):
  server = server_cls.return_value
  quiescer = JenkinsQuiescer("http://ci:8080/", "admin", "token", timeout=7)

  assert quiescer.quiesce()
  assert quiescer.resume()

  server_cls.assert_called_with("http://ci:8080", username="admin", password="token", timeout=7)
  server.quiet_down.assert_called_once_with()
  request = server.jenkins_open.call_args.args[0]
  assert request.method == "POST"
  assert request.url == "http://ci:8080/cancelQuietDown"


@mock.patch("jenkins_ops.service.jenkins.Jenkins")
def test_quiesce_failures_are_not_fatal(server_cls, caplog):
  server = server_cls.return_value
  server.quiet_down.side_effect = jenkins.JenkinsException("quiet down failed")
  server.jenkins_open.side_effect = requests.exceptions.ConnectionError("refused")
  quiescer = JenkinsQuiescer("http://ci:8080", "admin", "token")

  assert quiescer.quiesce() is False
  assert quiescer.resume() is False
  assert "quietDown request failed" in caplog.text
  assert "cancelQuietDown failed" in caplog.text

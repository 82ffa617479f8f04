# command line entry points: jenkins-backup, jenkins-restore, jenkins-plugins

import argparse
import logging
import sys

import jenkins
import requests

from jenkins_ops import plugins
from jenkins_ops.backup import BackupProducer
from jenkins_ops.config import load_config
from jenkins_ops.errors import JenkinsOpsError, RestoreFailed, RollbackFailed
from jenkins_ops.health import HttpHealthChecker
from jenkins_ops.restore import RestoreExecutor
from jenkins_ops.service import JenkinsQuiescer, SystemdService

logger = logging.getLogger("jenkins_ops")


def setup_logging(verbose=False):
  logging.basicConfig(
    level=logging.DEBUG if verbose else logging.INFO,
    format="[%(levelname)s] %(message)s",
    stream=sys.stderr,
  )


def _report(error):
  if isinstance(error, RollbackFailed):
    logger.critical(str(error))
  else:
    logger.error(str(error))
  if isinstance(error, (RestoreFailed, RollbackFailed)):
    logger.error("safety copy: {}".format(error.safety_path))
  return error.exit_code


def backup_parser():
  parser = argparse.ArgumentParser(prog="jenkins-backup", description="Create a versioned, checksummed Jenkins backup bundle.")
  parser.add_argument("--jenkins-home", help="override JENKINS_HOME")
  parser.add_argument("--war-path", help="override WAR path (auto-detected if omitted)")
  parser.add_argument("--backup-dir", help="where to write backups")
  parser.add_argument("--keep", type=int, help="how many backups to keep")
  parser.add_argument("--quiesce", dest="quiesce", action="store_true", default=None,
                      help="quiet jenkins down via the REST api while archiving")
  parser.add_argument("--no-quiesce", dest="quiesce", action="store_false")
  parser.add_argument("--dry-run", action="store_true", help="show the plan, write nothing")
  parser.add_argument("--print-config", action="store_true", help="print resolved config and exit")
  parser.add_argument("--preflight", action="store_true", help="run sanity checks then exit")
  parser.add_argument("-v", "--verbose", action="store_true")
  return parser


def backup_main(argv=None):
  args = backup_parser().parse_args(argv)
  setup_logging(args.verbose)
  try:
    config = load_config({
      "jenkins_home": args.jenkins_home,
      "war_path": args.war_path,
      "backup_dir": args.backup_dir,
      "keep": args.keep,
      "quiesce": args.quiesce,
    })
    if args.print_config:
      print(config.describe())
      return 0
    quiescer = None
    if config.quiesce:
      quiescer = JenkinsQuiescer(config.jenkins_url, config.jenkins_user, config.jenkins_token,
                                 timeout=config.request_timeout)
    producer = BackupProducer(config, quiescer=quiescer)
    if args.preflight:
      producer.check()
      return 0
    producer.run(dry_run=args.dry_run)
  except JenkinsOpsError as e:
    return _report(e)
  return 0


def restore_parser():
  parser = argparse.ArgumentParser(prog="jenkins-restore", description="Restore Jenkins from a backup bundle, rolling back if it comes up unhealthy.")
  parser.add_argument("bundle", help="path to jenkins-backup-<ts>.tar.gz")
  parser.add_argument("--jenkins-home", help="override JENKINS_HOME")
  parser.add_argument("--war-dst", help="where to install the WAR from the bundle")
  parser.add_argument("--health-url", help="URL polled after start")
  parser.add_argument("--timeout", type=float, help="seconds to wait for jenkins to become healthy")
  parser.add_argument("-v", "--verbose", action="store_true")
  return parser


def restore_main(argv=None):
  args = restore_parser().parse_args(argv)
  setup_logging(args.verbose)
  try:
    config = load_config({
      "jenkins_home": args.jenkins_home,
      "war_dst": args.war_dst,
      "health_url": args.health_url,
      "health_timeout": args.timeout,
    })
    health = HttpHealthChecker(config.health_url, timeout=config.health_timeout,
                               interval=config.health_interval, request_timeout=config.request_timeout)
    executor = RestoreExecutor(config, SystemdService(config.service_name), health)
    executor.run(args.bundle)
  except JenkinsOpsError as e:
    return _report(e)
  return 0


def plugins_parser():
  parser = argparse.ArgumentParser(prog="jenkins-plugins", description="List Jenkins plugins with a health score.")
  parser.add_argument("-u", "--url", help="Jenkins base URL (default: $JENKINS_URL or http://localhost:8080)")
  parser.add_argument("-a", "--user", help="username (or set JENKINS_USER)")
  parser.add_argument("-t", "--token", help="API token (or set JENKINS_API_TOKEN)")
  parser.add_argument("--plugins-dir", help="Jenkins plugins dir, used to infer InstalledAt")
  parser.add_argument("--format", default="table", choices=plugins.FORMATS)
  parser.add_argument("--no-header", action="store_true")
  parser.add_argument("-v", "--verbose", action="store_true")
  return parser


def plugins_main(argv=None):
  args = plugins_parser().parse_args(argv)
  setup_logging(args.verbose)
  try:
    config = load_config({
      "jenkins_url": args.url,
      "jenkins_user": args.user,
      "jenkins_token": args.token,
    }, detect=False)
    if config.jenkins_user and not config.jenkins_token:
      logger.error("a user was given without a token")
      return 1
    server = plugins.connect(config.jenkins_url or "http://localhost:8080", config.jenkins_user,
                             config.jenkins_token)
    rows = plugins.fetch_plugins(server, args.plugins_dir)
    print(plugins.render(rows, args.format, header=not args.no_header))
  except JenkinsOpsError as e:
    return _report(e)
  except (jenkins.JenkinsException, requests.exceptions.RequestException) as e:
    logger.error("could not list plugins: {}".format(e))
    return 3
  return 0


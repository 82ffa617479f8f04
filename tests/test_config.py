import pytest

from jenkins_ops.config import Config, detect_jenkins_home, detect_war, load_config
from jenkins_ops.errors import ConfigError, PreconditionError


class TestLoadConfig:

  def test_defaults(self):
    config = load_config(environ={}, detect=False)
    assert config.jenkins_home == "/var/lib/jenkins"
    assert config.backup_dir == "/var/backups/jenkins"
    assert config.keep == 7
    assert config.health_url == "http://127.0.0.1:8080/login"
    assert config.health_timeout == 120
    assert config.quiesce is False

  def test_environment_overrides_defaults(self):
    config = load_config(environ={"BACKUP_DIR": "/srv/backups", "KEEP": "3", "TIMEOUT": "30"}, detect=False)
    assert config.backup_dir == "/srv/backups"
    assert config.keep == 3
    assert config.health_timeout == 30.0

  def test_flags_override_environment(self):
    config = load_config({"keep": 10, "backup_dir": None}, environ={"KEEP": "3", "BACKUP_DIR": "/srv/b"},
                         detect=False)
    assert config.keep == 10
    assert config.backup_dir == "/srv/b"

  def test_bad_integer(self):
    with pytest.raises(ConfigError, match="KEEP"):
      load_config(environ={"KEEP": "lots"}, detect=False)

  def test_keep_must_be_positive(self):
    with pytest.raises(ConfigError):
      load_config({"keep": 0}, environ={}, detect=False)

  def test_quiesce_needs_credentials(self):
    with pytest.raises(ConfigError, match="JENKINS_API_TOKEN"):
      load_config({"quiesce": True}, environ={"JENKINS_URL": "http://ci:8080"}, detect=False)

  def test_config_error_is_a_precondition(self):
    assert issubclass(ConfigError, PreconditionError)

  def test_unknown_override(self):
    with pytest.raises(ConfigError):
      load_config({"colour": "blue"}, environ={}, detect=False)


def test_describe_hides_token():
  config = Config(quiesce=True, jenkins_url="http://ci:8080", jenkins_user="admin", jenkins_token="s3cret")
  text = config.describe()
  assert "s3cret" not in text
  assert "TOKEN set?   : yes" in text
  assert "WAR_PATH     : <not found>" in text


def test_detect_home_from_unit_file(tmp_path):
  home = tmp_path / "jenkins-data"
  home.mkdir()
  unit = tmp_path / "jenkins.service"
  unit.write_text('[Service]\nEnvironment="JENKINS_HOME={}"\n'.format(home))
  assert detect_jenkins_home(str(tmp_path / "missing"), str(unit), str(tmp_path / "none")) == str(home)


def test_detect_home_from_etc_default(tmp_path):
  home = tmp_path / "jenkins-data"
  home.mkdir()
  defaults = tmp_path / "jenkins"
  defaults.write_text('NAME=jenkins\nJENKINS_HOME="{}"\n'.format(home))
  assert detect_jenkins_home(str(tmp_path / "missing"), str(tmp_path / "none"), str(defaults)) == str(home)


def test_existing_home_wins(tmp_path):
  assert detect_jenkins_home(str(tmp_path), "/nonexistent", "/nonexistent") == str(tmp_path)


def test_detect_war(tmp_path):
  war = tmp_path / "jenkins.war"
  war.write_bytes(b"")
  assert detect_war("", [str(tmp_path / "a.war"), str(war)]) == str(war)
  assert detect_war(str(tmp_path / "gone.war"), []) == ""

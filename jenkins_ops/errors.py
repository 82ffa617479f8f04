# failure categories for the backup/restore tooling
#
# every exception carries the exit code the cli hands back to the shell


class JenkinsOpsError(Exception):
  exit_code = 1


class PreconditionError(JenkinsOpsError):
  """Raised before any state has been touched."""
  exit_code = 2


class ConfigError(PreconditionError):
  pass


class IntegrityError(PreconditionError):
  pass


class LockedError(PreconditionError):
  pass


class PipelineError(JenkinsOpsError):
  """A required step failed mid-way; nothing destructive has happened yet."""
  exit_code = 3


class RestoreFailed(JenkinsOpsError):
  """Jenkins never came back healthy and the safety copy was put back."""
  exit_code = 4

  def __init__(self, message, safety_path):
    super().__init__(message)
    self.safety_path = safety_path


class RollbackFailed(JenkinsOpsError):
  """The rollback itself failed, live state is neither old nor new."""
  exit_code = 5

  def __init__(self, message, safety_path):
    super().__init__(message)
    self.safety_path = safety_path

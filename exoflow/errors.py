__author__ = 'gdq'

"""
Error types raised while building or running the workflow.

Configuration problems and broken graph bindings are raised before any task runs.
Failures of the external tools are recorded by the runner per task and key, so that
other keys keep running; the runner never raises them across threads.
"""


class ExoflowError(Exception):
    pass


class ConfigurationError(ExoflowError):
    """
    A resource bundle cannot be resolved. `missing` lists the parameter names the user
    has to provide, e.g. ['bait', 'target'].
    """
    def __init__(self, message, missing=()):
        self.missing = list(missing)
        if self.missing:
            message = f'{message}. Missing parameters: {", ".join(self.missing)}'
        super().__init__(message)


class MissingKitConfig(ConfigurationError):
    pass


class MissingGenomeConfig(ConfigurationError):
    pass


class MissingUpstreamArtifact(ExoflowError):
    def __init__(self, stage, key, detail=''):
        self.stage = stage
        self.key = key
        self.detail = detail
        super().__init__(f'{stage} [{key}]: missing upstream artifact {detail}'.strip())


class ExternalToolFailure(ExoflowError):
    def __init__(self, stage, key, exit_code, stdout=None, stderr=None, reason=''):
        self.stage = stage
        self.key = key
        self.exit_code = exit_code
        # paths of the captured tool output
        self.stdout = stdout
        self.stderr = stderr
        self.reason = reason
        msg = f'{stage} [{key}] failed with exit code {exit_code}'
        if reason:
            msg += f': {reason}'
        super().__init__(msg)


class VersionProbeFailure(ExoflowError):
    def __init__(self, tool):
        self.tool = tool
        super().__init__(f'no version string found for {tool}')

__version__ = '0.1.0'

from .errors import ExoflowError, ConfigurationError, MissingKitConfig, MissingGenomeConfig
from .errors import MissingUpstreamArtifact, ExternalToolFailure, VersionProbeFailure
from .exoflow import Argument, Output, Command, Task, TopVar, Workflow
from .resources import ResourceBundle, resolve_bundle

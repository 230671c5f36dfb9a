# ABOUTME: Exposes the CRP skill-discovery engine entrypoints.
# ABOUTME: Groups the observation store, recall model, partition, samplers, and MCMC driver.

from .mcmc import MapEstimate, PosteriorSample, SamplerConfig, SkillDiscoveryModel
from .observations import ObservationStore
from .recall_model import BktRecallModel, estimate_new_cluster_marginal
from .train import run_skill_discovery

__all__ = [
    "BktRecallModel",
    "MapEstimate",
    "ObservationStore",
    "PosteriorSample",
    "SamplerConfig",
    "SkillDiscoveryModel",
    "estimate_new_cluster_marginal",
    "run_skill_discovery",
]

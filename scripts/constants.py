"""Constants for the project."""

from pathlib import Path
from typing import List

PROJECT_ROOT = Path(__file__).parent.parent

# ============================================================================
# Results directories
# ============================================================================
RESULTS_FOLDER = PROJECT_ROOT / "results"

# Phylo-HMM definition used when --model is not given
HMM_YAML = RESULTS_FOLDER / "parameters" / "phylohmm.yaml"

# ============================================================================
# Category names
# ============================================================================
DEFAULT_BACKGROUND_CATS: List[str] = ["background", "CNS"]
DEFAULT_GROUPTAG = "exon_id"

# ============================================================================
# Sampler parameters
# ============================================================================
BURN_IN_SAMPLES = 5000
NUM_SAMPLES = 100000
SAMPLE_INTERVAL = 1
RANDOM_SEED = 42

# ============================================================================
# Bias range (log-odds added to feature entry transitions)
# ============================================================================
BIAS_RANGE_MIN = -20.0
BIAS_RANGE_MAX = 10.0

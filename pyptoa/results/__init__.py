from .indexing import (
    Bone,
    Compartment,
    Layer,
    Leg,
    Modality,
    ResultIndex,
    SubRegion,
    storage_index,
)
from .store import ResultStore
from .tables import ResultsSpreadsheet, results_table

import os

os.environ["MKL_NUM_THREADS"] = "1"
os.environ["OMP_NUM_THREADS"] = "1"
os.environ["OPENBLAS_NUM_THREADS"] = "1"


import pyptoa.image as image
import pyptoa.results as results
import pyptoa.statistics as statistics
import pyptoa.utils as utils

RTOL = 1e-4
ATOL = 1e-5
__version__ = "0.1.0"

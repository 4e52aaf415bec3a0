"""
Categorical axes of the result index and their mapping to storage slots.

Every result array in a `ResultStore` has the shape
``(n_subjects, 2, 2, 2, 3, 2)``. The axes are:

    0 - Subject (position of the subject directory in the run)
    1 - Leg - left / right
    2 - Bone - femur / tibia
    3 - Compartment - lateral / medial
    4 - ROI (sub-region) - anterior or trochlea / central / posterior
    5 - Layer - deep / superficial

The enumeration values below are the zero-based storage slots.
"""

from enum import IntEnum
from typing import NamedTuple


class Modality(IntEnum):
    T1RHO = 0
    T2STAR = 1


class Leg(IntEnum):
    LEFT = 0
    RIGHT = 1


class Bone(IntEnum):
    FEMUR = 0
    TIBIA = 1


class Compartment(IntEnum):
    LATERAL = 0
    MEDIAL = 1


class SubRegion(IntEnum):
    # trochlea for the femur, anterior for the tibia
    ANTERIOR = 0
    CENTRAL = 1
    POSTERIOR = 2


class Layer(IntEnum):
    DEEP = 0
    SUPERFICIAL = 1


# Shape of the categorical part of the index (everything after subject).
CATEGORY_SHAPE = (len(Leg), len(Bone), len(Compartment), len(SubRegion), len(Layer))

MODALITY_PREFIX = {Modality.T1RHO: "t1r", Modality.T2STAR: "t2s"}
MODALITY_LABEL = {Modality.T1RHO: "T1R", Modality.T2STAR: "T2S"}

SUB_REGION_NAMES = {
    Bone.FEMUR: {
        SubRegion.ANTERIOR: "trochlea",
        SubRegion.CENTRAL: "central",
        SubRegion.POSTERIOR: "posterior",
    },
    Bone.TIBIA: {
        SubRegion.ANTERIOR: "anterior",
        SubRegion.CENTRAL: "central",
        SubRegion.POSTERIOR: "posterior",
    },
}


def storage_index(member, enum_type):
    """
    Convert a categorical value into its storage slot.

    Parameters
    ----------
    member : IntEnum or int
        Member of `enum_type`, or the integer code of one.
    enum_type : type
        One of the categorical enumerations (`Leg`, `Bone`, ...).

    Returns
    -------
    int
        Zero-based slot of `member` along the axis of `enum_type`.

    Raises
    ------
    ValueError
        If `member` is a member of a different enumeration or an integer
        outside the enumeration.
    """
    if isinstance(member, IntEnum) and not isinstance(member, enum_type):
        raise ValueError(
            f"{member!r} is a {type(member).__name__}, expected a {enum_type.__name__}."
        )
    try:
        return int(enum_type(member))
    except ValueError:
        raise ValueError(
            f"{member!r} is not a valid {enum_type.__name__}. "
            f"Valid codes are {[int(m) for m in enum_type]}."
        ) from None


class ResultIndex(NamedTuple):
    """Identifies one cell of the six-dimensional result index."""

    subject: int
    leg: Leg
    bone: Bone
    compartment: Compartment
    sub_region: SubRegion
    layer: Layer

    @classmethod
    def from_codes(cls, subject, leg, bone, compartment, sub_region, layer):
        if int(subject) < 0:
            raise ValueError(f"Subject position must be non-negative, got {subject}.")
        return cls(
            int(subject),
            Leg(storage_index(leg, Leg)),
            Bone(storage_index(bone, Bone)),
            Compartment(storage_index(compartment, Compartment)),
            SubRegion(storage_index(sub_region, SubRegion)),
            Layer(storage_index(layer, Layer)),
        )

    @property
    def cell(self):
        """Integer tuple used to index the store arrays."""
        return (
            self.subject,
            storage_index(self.leg, Leg),
            storage_index(self.bone, Bone),
            storage_index(self.compartment, Compartment),
            storage_index(self.sub_region, SubRegion),
            storage_index(self.layer, Layer),
        )

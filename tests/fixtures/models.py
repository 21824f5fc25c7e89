import numpy as np

from denim import CompartmentalModel, ContactMatrix, exponential


def make_two_location_model(off_diagonal=0.1, transmission_rate=0.5,
                            recovery_rate=0.25):
    """Two locations, only A seeded; S -> I by force of infection."""
    location = ContactMatrix(
        "location", ("A", "B"),
        np.array([[0.85, off_diagonal], [off_diagonal, 0.95]])
    )
    return CompartmentalModel(
        transitions=["S -> I", "I -> R"],
        initial_values={
            "A": {"S": 999, "I": 1, "R": 0},
            "B": {"S": 1000, "I": 0, "R": 0},
        },
        distributions={"I -> R": exponential(rate=recovery_rate)},
        contacts=[location],
        transmission_rate=transmission_rate,
        infectious_compartments=["I"],
    )

"""Tests for element and charge conservation makeup."""

import logging

import numpy as np
import pytest

from grainchem import (
    ConservationStatus,
    Element,
    Network,
    Species,
    electron,
    grain_charge_states,
)
from grainchem.conservation import (
    charge_makeup,
    element_makeup_sub,
    elemental_densities,
    enforce_conservation,
    net_charge,
)
from grainchem.errors import ConservationError


def assert_conserved(network, densities, reference_density=1.0):
    np.testing.assert_allclose(
        elemental_densities(network, densities),
        network.element_targets(reference_density),
        rtol=1e-12,
    )
    assert net_charge(network, densities) == pytest.approx(0.0, abs=1e-14)
    assert np.all(densities >= 0.0)


class TestConservationProperties:
    """Element conservation, neutrality, non-negativity and idempotence."""

    @pytest.mark.parametrize(
        "perturbation",
        [
            [1.0, 1.1, 0.9, 1.05, 0.95, 1.1, 0.9, 1.2],
            [0.5, 0.8, 0.9, 0.7, 0.9, 0.95, 1.3, 0.6],
            [2.0, 1.2, 1.01, 1.3, 1.1, 1.2, 0.8, 1.1],
        ],
    )
    def test_makeup_restores_targets(self, water_network, water_densities, perturbation):
        densities = water_densities * np.array(perturbation)
        status = enforce_conservation(water_network, densities)
        assert status == ConservationStatus.OK
        assert_conserved(water_network, densities)

    def test_already_conserved_is_unchanged(self, water_network, water_densities):
        densities = water_densities.copy()
        assert enforce_conservation(water_network, densities) == ConservationStatus.OK
        np.testing.assert_allclose(densities, water_densities, rtol=1e-14)

    def test_idempotent(self, water_network, water_densities):
        densities = water_densities * np.array([1.0, 1.3, 0.8, 1.2, 1.1, 0.9, 1.0, 1.1])
        enforce_conservation(water_network, densities)
        once = densities.copy()
        assert enforce_conservation(water_network, densities) == ConservationStatus.OK
        np.testing.assert_allclose(densities, once, rtol=1e-12, atol=1e-15)

    def test_reference_density_scales_targets(self, water_network, water_densities):
        densities = water_densities * 10.0 * 1.1
        status = enforce_conservation(water_network, densities, reference_density=10.0)
        assert status == ConservationStatus.OK
        assert_conserved(water_network, densities, reference_density=10.0)

    def test_negative_densities_clamped(self, water_network, water_densities, caplog):
        densities = water_densities.copy()
        densities[4] = -1e-3
        with caplog.at_level(logging.DEBUG, logger="grainchem.conservation"):
            status = enforce_conservation(water_network, densities)
        assert status == ConservationStatus.OK
        assert densities[4] >= 0.0
        assert "[OH]" in caplog.text
        assert_conserved(water_network, densities)

    def test_electron_derived_from_charge(self, water_network, water_densities):
        densities = water_densities.copy()
        densities[0] = 5.0
        enforce_conservation(water_network, densities)
        assert densities[0] == pytest.approx(0.1)


class TestElementMakeup:
    """Deficit and surplus corrections of true elements."""

    def test_deficit_scales_single_element_species(self):
        species = [electron(), Species("H", 0, {"H": 1}), Species("H2", 0, {"H": 2})]
        network = Network(species, [Element("H", 4.5)])
        densities = np.array([0.0, 1.0, 1.0])

        assert enforce_conservation(network, densities) == ConservationStatus.OK
        # total was 3.0, target 50% higher: both reservoirs grow by half
        np.testing.assert_allclose(densities, [0.0, 1.5, 1.5])
        assert elemental_densities(network, densities)[0] == pytest.approx(4.5)

    def test_deficit_leaves_other_species_alone(self, water_network, water_densities):
        densities = water_densities.copy()
        densities[1] = 0.05  # H deficit of 0.05
        enforce_conservation(water_network, densities)
        np.testing.assert_allclose(densities[[3, 4, 5, 7]], water_densities[[3, 4, 5, 7]])
        assert_conserved(water_network, densities)

    def test_deficit_with_empty_reservoir_seeds_first_species(self):
        species = [
            electron(),
            Species("C", 0, {"C": 1}),
            Species("CO", 0, {"C": 1, "O": 1}),
            Species("O", 0, {"O": 1}),
        ]
        network = Network(species, [Element("C", 1.0), Element("O", 1.0)])
        densities = np.array([0.0, 0.0, 0.4, 0.6])

        assert enforce_conservation(network, densities) == ConservationStatus.OK
        assert densities[1] == pytest.approx(0.6)
        assert_conserved(network, densities)

    def test_surplus_moves_other_elements_to_reservoir(self, water_network, water_densities):
        densities = water_densities.copy()
        densities[5] += 0.13  # extra water: O surplus 0.13, H surplus 0.26
        hydrogen_before = elemental_densities(water_network, densities)[0]

        element_makeup_sub(water_network, densities, 1, 0.13)

        # H content of the removed O carriers went to atomic H
        assert elemental_densities(water_network, densities)[0] == pytest.approx(
            hydrogen_before
        )
        assert elemental_densities(water_network, densities)[1] == pytest.approx(0.65)
        # ions are not O carriers
        assert densities[7] == water_densities[7]

    def test_surplus_scales_neutral_carriers_uniformly(self, water_network, water_densities):
        densities = water_densities.copy()
        densities[3] += 0.1
        before = densities.copy()
        element_makeup_sub(water_network, densities, 1, 0.1)
        carriers = [3, 4, 5]
        ratios = densities[carriers] / before[carriers]
        np.testing.assert_allclose(ratios, ratios[0])

    def test_insufficient_reservoir_fails(self, water_network, water_densities):
        densities = water_densities.copy()
        densities[7] = 5.0  # O+ far above the O target; neutral carriers hold 0.6
        status = enforce_conservation(water_network, densities)
        assert status == ConservationStatus.ELEMENT_UNMATCHED
        assert np.all(np.isfinite(densities))
        assert np.all(densities >= 0.0)

    def test_insufficient_reservoir_raises_in_sub(self, water_network, water_densities):
        densities = water_densities.copy()
        with pytest.raises(ConservationError, match=r"\[O\]"):
            element_makeup_sub(water_network, densities, 1, 10.0)
        np.testing.assert_array_equal(densities, water_densities)


class TestGrainAndChargeMakeup:
    """Grain totals and negative-charge makeup."""

    def test_grain_total_rescaled(self, grain_network):
        densities = np.array([0.0, 3.0, 0.0, 2.0, 8.0, 4.0])
        status = enforce_conservation(grain_network, densities)
        assert status == ConservationStatus.OK
        # every charge state shrinks by the same factor
        np.testing.assert_allclose(densities[3:], [1.0, 4.0, 2.0])
        assert densities[0] == pytest.approx(1.0)
        assert_conserved(grain_network, densities)

    def test_charge_imbalance_neutralises_negative_grains(self, grain_network):
        densities = np.array([0.0, 3.0, 0.0, 5.0, 1.0, 1.0])
        status = enforce_conservation(grain_network, densities)

        assert status == ConservationStatus.OK
        # ratio 4/5 of G- becomes neutral
        np.testing.assert_allclose(densities, [0.0, 3.0, 0.0, 1.0, 5.0, 1.0])
        assert densities[3:].sum() == pytest.approx(7.0)
        assert net_charge(grain_network, densities) == pytest.approx(0.0, abs=1e-14)

    def test_charge_makeup_keeps_each_grain_family(self):
        species = [electron()] + grain_charge_states("G", 1) + grain_charge_states("P", 2)
        network = Network(
            species, [Element("G", 3.0, grain=True), Element("P", 6.0, grain=True)]
        )
        # G-, G, G+, P2-, P-, P, P+, P2+
        densities = np.array([0.0, 2.0, 1.0, 0.0, 1.0, 1.0, 2.0, 1.0, 1.0])

        status = enforce_conservation(network, densities)

        assert status == ConservationStatus.OK
        # negative charge -5 in total, ratio 0.4 of every negative state neutralised
        np.testing.assert_allclose(
            densities, [0.0, 1.2, 1.8, 0.0, 0.6, 0.6, 2.8, 1.0, 1.0]
        )
        np.testing.assert_allclose(elemental_densities(network, densities), [3.0, 6.0])
        assert net_charge(network, densities) == pytest.approx(0.0, abs=1e-14)

    def test_multiply_charged_grains(self):
        species = [electron(), Species("G2-", -2, {"G": 1}), Species("G", 0, {"G": 1})]
        network = Network(species, [Element("G", 3.0, grain=True)])
        densities = np.array([0.0, 2.0, 1.0])
        # charge -4 must be removed entirely
        charge_makeup(network, densities, 4.0)
        np.testing.assert_allclose(densities, [0.0, 0.0, 3.0])

    def test_insufficient_negative_charge_fails(self, grain_network):
        densities = np.array([0.0, 1.0, 2.0, 0.5, 3.5, 0.0])
        status = enforce_conservation(grain_network, densities)
        assert status == ConservationStatus.CHARGE_UNMATCHED
        assert np.all(densities >= 0.0)

    def test_no_negative_grains_fails(self, grain_network):
        densities = np.array([0.0, 1.0, 2.0, 0.0, 7.0, 0.0])
        with pytest.raises(ConservationError, match="no negatively charged grains"):
            charge_makeup(grain_network, densities, 2.0)
        assert enforce_conservation(grain_network, densities) == (
            ConservationStatus.CHARGE_UNMATCHED
        )

    def test_vanished_grains_fail(self, grain_network):
        densities = np.array([0.0, 3.0, 0.0, 0.0, 0.0, 0.0])
        status = enforce_conservation(grain_network, densities)
        assert status == ConservationStatus.ELEMENT_UNMATCHED

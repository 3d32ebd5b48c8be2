from core.data_structures import Human, Population, TransmissionModel
from malsim.random_stream import RandomStream
from malsim.sim_time import SimTime, TimeUnits


def make_population(n=10, seed=1):
    units = TimeUnits(5)
    return Population(n_persons=n, max_age=units.from_years_d(90),
                      units=units, rng=RandomStream(seed))


def test_population_generation():
    pop = make_population()
    assert len(pop) == 10
    assert pop.size == 10
    for human in pop:
        age = human.age(SimTime.zero())
        assert SimTime.zero() <= age < SimTime.from_years_i(90)
        assert age.in_days() % 5 == 0
    assert pop.rng.draws == 10


def test_population_is_reproducible():
    first = [h.date_of_birth for h in make_population(seed=4)]
    second = [h.date_of_birth for h in make_population(seed=4)]
    assert first == second


def test_demography_replaces_old_humans_at_the_end():
    pop = make_population(3)
    pop.humans[0].date_of_birth = -pop.max_age
    keep = pop.humans[1:]
    born = pop.update_demography(SimTime.from_days(5))
    assert born == 1
    assert pop.humans[:2] == keep
    assert pop.humans[2].date_of_birth == SimTime.from_days(5)
    assert pop.size == 3


def test_protection_expires():
    human = Human(date_of_birth=SimTime.zero())
    assert not human.has_irs_protection(SimTime.zero(),
                                        SimTime.from_days(100))
    human.deploy_irs(SimTime.from_days(10))
    assert human.has_irs_protection(SimTime.from_days(109),
                                    SimTime.from_days(100))
    assert not human.has_irs_protection(SimTime.from_days(110),
                                        SimTime.from_days(100))


def test_transmission_vector_deployment_needs_instance():
    transmission = TransmissionModel()
    transmission.init_vector_interv({"name": "larviciding"}, 0)
    transmission.deploy_vector_pop_interv(0)
    assert transmission.vector_deployments == [0]
    try:
        transmission.deploy_vector_pop_interv(1)
    except KeyError:
        pass
    else:
        raise AssertionError("expected KeyError")

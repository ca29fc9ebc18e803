import unittest
from datetime import datetime, timezone
from nstar_alignment.astro import local_sidereal_time, range24
from nstar_alignment.config import AlignmentSettings, TransformKind
from nstar_alignment.model import AlignmentModel
from nstar_alignment.positions import AxisPosition, EncoderPosition
from nstar_alignment.transforms import TakiTransform

LATITUDE = 52.6683333333333
SYNC_TIME = datetime(2022, 11, 28, 19, 6, 6)

# Encoder positions around the pole-facing home of an EQMOD mount
GRID = [
    (8300000, 8900000),
    (8500000, 8900000),
    (8400000, 9100000),
    (8420000, 8800000),
]


def linear_target(encoder):
    """A small rotation/shear plus offset, as a mount with fixed errors would show."""
    ra, dec = encoder
    return EncoderPosition(
        ra + 300 + round(0.0005 * (dec - 9003008)),
        dec - 150 + round(0.0002 * (ra - 8388608)),
    )


def raw_model(**kwargs):
    kwargs.setdefault("latitude", LATITUDE)
    kwargs.setdefault("polar_enable", False)
    return AlignmentModel(AlignmentSettings(**kwargs))


def assert_axes_close(test, a, b, tol):
    diff = abs(a.ra - b.ra) % 24.0
    test.assertLess(min(diff, 24.0 - diff), tol)
    diff = abs(a.dec - b.dec) % 360.0
    test.assertLess(min(diff, 360.0 - diff), tol)


class TestAlignmentPoints(unittest.TestCase):
    def test_add_assigns_ids(self):
        model = raw_model()
        ids = [model.add_alignment_point(e, (0.0, 0.0), linear_target(e), SYNC_TIME) for e in GRID]
        self.assertEqual(ids, [1, 2, 3, 4])
        point = model.alignment_points[0]
        self.assertEqual(point.encoder, EncoderPosition(*GRID[0]))
        self.assertEqual(point.delta, linear_target(GRID[0]) - GRID[0])
        self.assertEqual(point.align_time, SYNC_TIME)

    def test_remove_and_clear(self):
        model = raw_model()
        for e in GRID:
            model.add_alignment_point(e, (0.0, 0.0), linear_target(e))
        self.assertTrue(model.remove_alignment_point(2))
        self.assertFalse(model.remove_alignment_point(2))
        self.assertEqual([p.id for p in model.alignment_points], [1, 3, 4])
        self.assertEqual(model.add_alignment_point(GRID[1], (0.0, 0.0), GRID[1]), 5)

        model.clear_alignment_points()
        self.assertEqual(model.alignment_points, [])
        query = (8400000, 8950000)
        self.assertEqual(model.get_sky_steps(query), query)

    def test_proximity_replacement(self):
        """
        Description:
            Verifies that a sync close to an existing point replaces it once
            more than three points are stored.

        Methodology:
            1. Adds the four grid points.
            2. Adds a sync 1000 steps (well inside 0.5 degrees) from the first.
            3. Adds a sync far from every point.

        Expected Results:
            - The first point is replaced by the new one.
            - The far sync is simply appended.
        """
        model = raw_model()
        for e in GRID:
            model.add_alignment_point(e, (0.0, 0.0), e)
        near = (GRID[0][0] + 1000, GRID[0][1] - 1000)
        self.assertEqual(model.add_alignment_point(near, (0.0, 0.0), near), 5)
        self.assertEqual([p.id for p in model.alignment_points], [2, 3, 4, 5])

        model.add_alignment_point((8600000, 9050000), (0.0, 0.0), (8600000, 9050000))
        self.assertEqual(len(model.alignment_points), 5)

    def test_no_replacement_with_three_points(self):
        model = raw_model()
        for e in GRID[:3]:
            model.add_alignment_point(e, (0.0, 0.0), e)
        model.add_alignment_point(GRID[0], (0.0, 0.0), GRID[0])
        self.assertEqual(len(model.alignment_points), 4)

    def test_home_position_offset(self):
        model = raw_model(home_position=(0, 0))
        self.assertEqual(model.encoder_mapping_offset, EncoderPosition(8388608, 9003008))
        model.add_alignment_point((100, 200), (0.0, 0.0), (110, 190))
        point = model.alignment_points[0]
        self.assertEqual(point.encoder, EncoderPosition(8388708, 9003208))
        self.assertEqual(point.target, EncoderPosition(8388718, 9003198))
        self.assertEqual(model.get_sky_steps((100, 200)), (100, 200))

    def test_report(self):
        model = raw_model()
        for e in GRID[:2]:
            model.add_alignment_point(e, (23.6715774536133, 77.7643051147461), e, SYNC_TIME)
        lines = model.report().splitlines()
        self.assertEqual(len(lines), 3)
        self.assertIn("Id", lines[0])
        self.assertIn("8300000", lines[1])
        self.assertIn("2022-11-28 19:06:06", lines[2])


class TestGracefulDegradation(unittest.TestCase):
    """
    Corrections with too few or degenerate alignment points.
    """

    def test_identity_below_three_points(self):
        """
        Description:
            Verifies that corrections are the identity with 0, 1 or 2 points.

        Methodology:
            1. Queries both directions after adding each of the first two points.

        Expected Results:
            - Inputs are returned unchanged and nothing is raised.
        """
        for polar_enable in (True, False):
            model = raw_model(polar_enable=polar_enable)
            axes = AxisPosition(7.17370069429496, 246.372629242908)
            for e in [None] + GRID[:2]:
                if e is not None:
                    model.add_alignment_point(e, (0.0, 0.0), linear_target(e))
                self.assertEqual(model.get_sky_axes(axes), axes)
                self.assertEqual(model.get_mount_axes(axes), axes)
                self.assertEqual(model.get_sky_steps((8400000, 8950000)), (8400000, 8950000))
                self.assertEqual(model.get_mount_steps((8400000, 8950000)), (8400000, 8950000))
                self.assertEqual(model.selected_point_ids, ())

    def test_collinear_points(self):
        """
        Description:
            Verifies that a singular triangle never escapes to the caller.

        Methodology:
            1. Adds three collinear alignment points.
            2. Requests a correction off the line.

        Expected Results:
            - The position is returned unchanged and a warning is logged.
        """
        model = raw_model()
        for e in [(8300000, 8900000), (8400000, 8950000), (8500000, 9000000)]:
            model.add_alignment_point(e, (0.0, 0.0), linear_target(e))
        query = (8400000, 9050000)
        with self.assertLogs("nstar_alignment.model", level="WARNING"):
            result = model.get_sky_steps(query)
        self.assertEqual(result, query)
        self.assertEqual(model.selected_point_ids, ())

    def test_collinear_points_axes_unchanged(self):
        """
        Description:
            Verifies that the identity fallback returns the caller's axes
            exactly, without a round trip through encoder counts.

        Methodology:
            1. Adds three collinear alignment points.
            2. Requests sky and mount axes for a position off the line.

        Expected Results:
            - Both directions return the input axes unchanged.
        """
        model = raw_model()
        for e in [(8300000, 8900000), (8400000, 8950000), (8500000, 9000000)]:
            model.add_alignment_point(e, (0.0, 0.0), linear_target(e))
        axes = AxisPosition(7.17370069429496, 246.372629242908)
        with self.assertLogs("nstar_alignment.model", level="WARNING"):
            self.assertEqual(model.get_sky_axes(axes), axes)
        with self.assertLogs("nstar_alignment.model", level="WARNING"):
            self.assertEqual(model.get_mount_axes(axes), axes)
        self.assertEqual(model.selected_point_ids, ())

    def test_singular_triangle_skipped(self):
        """
        Description:
            Verifies that a degenerate enclosing triangle is skipped in favour
            of the next one.

        Methodology:
            1. Adds three points on a line through the query and two points
               above and below it, all offset by (+300, -150) steps.
            2. Corrects the query with the nearest-enclosing policy.

        Expected Results:
            - The collinear triangle (1, 2, 3) is rejected with a warning.
            - Triangle (1, 2, 4) is used and the offset is applied.
        """
        model = raw_model(three_point_algorithm="nearest_enclosing")
        for e in [
            (8390000, 8950000),
            (8410000, 8950000),
            (8420000, 8950000),
            (8400000, 9100000),
            (8400000, 8800000),
        ]:
            model.add_alignment_point(e, (0.0, 0.0), EncoderPosition(*e) + (300, -150))

        with self.assertLogs("nstar_alignment.model", level="WARNING") as logs:
            result = model.get_sky_steps((8400000, 8950000))
        self.assertIn("[1, 2, 3]", logs.output[0])
        self.assertEqual(model.selected_point_ids, (1, 2, 4))
        self.assertAlmostEqual(result.ra, 8400300, delta=1)
        self.assertAlmostEqual(result.dec, 8949850, delta=1)

    def test_invalid_encoder_passthrough(self):
        model = raw_model()
        for e in GRID:
            model.add_alignment_point(e, (0.0, 0.0), linear_target(e))
        self.assertEqual(model.get_sky_steps((0x1000000, 10)), (0x1000000, 10))
        self.assertEqual(model.get_mount_steps((10, 0x1000000)), (10, 0x1000000))


class TestCorrection(unittest.TestCase):
    """
    End-to-end corrections through triangle selection and transform assembly.
    """

    def build(self, **kwargs):
        model = raw_model(**kwargs)
        for e in GRID:
            model.add_alignment_point(e, (0.0, 0.0), linear_target(e), SYNC_TIME)
        return model

    def test_linear_error_recovered(self):
        """
        Description:
            Verifies that a mount with a purely affine pointing error is
            corrected exactly inside the alignment triangle.

        Methodology:
            1. Syncs four points whose targets follow a known affine map.
            2. Corrects a position enclosed by the points, both directions.

        Expected Results:
            - The corrected position matches the map within 2 steps.
            - The inverse correction returns the original position.
        """
        for transform in (TransformKind.AFFINE, TransformKind.TAKI):
            model = self.build(transform=transform)
            query = EncoderPosition(8400000, 8950000)
            sky = model.get_sky_steps(query)
            expected = linear_target(query)
            self.assertAlmostEqual(sky.ra, expected.ra, delta=2)
            self.assertAlmostEqual(sky.dec, expected.dec, delta=2)
            self.assertEqual(len(model.selected_point_ids), 3)

            mount = model.get_mount_steps(sky)
            self.assertAlmostEqual(mount.ra, query.ra, delta=2)
            self.assertAlmostEqual(mount.dec, query.dec, delta=2)

    def test_axes_round_trip(self):
        """
        Description:
            Verifies get_sky_axes followed by get_mount_axes on the result.

        Methodology:
            1. Syncs four points with a known affine error.
            2. Corrects mount axes to sky axes and back.

        Expected Results:
            - The correction moves the position.
            - The original mount axes come back within 0.05.
        """
        model = self.build()
        when = datetime(2022, 11, 28, 19, 10, 0)
        mount_axes = model.geometry.encoder_to_axes((8400000, 8950000))
        sky_axes = model.get_sky_axes(mount_axes, when)
        self.assertGreater(abs(sky_axes.ra - mount_axes.ra), 1e-3)
        self.assertEqual(model.last_access_time, when)

        back = model.get_mount_axes(sky_axes, when)
        assert_axes_close(self, back, mount_axes, 0.05)

    def test_polar_round_trip(self):
        """
        Description:
            Verifies the correction through the spherical-polar working frame.

        Methodology:
            1. Syncs five points whose targets are offset by (+500, -300) steps.
            2. Corrects a position inside the grid and maps the result back.

        Expected Results:
            - The forward correction is close to the sync offset.
            - The inverse correction recovers the original axes within 0.05.
        """
        offset = (500, -300)
        points = [
            (8300000, 8700000),
            (8500000, 8700000),
            (8300000, 8900000),
            (8500000, 8900000),
            (8400000, 8950000),
        ]
        for transform in (TransformKind.AFFINE, TransformKind.TAKI):
            model = AlignmentModel(AlignmentSettings(latitude=LATITUDE, transform=transform))
            self.assertTrue(model.geometry.polar_enable)
            for e in points:
                model.add_alignment_point(e, (0.0, 0.0), EncoderPosition(*e) + offset)

            query = EncoderPosition(8400000, 8800000)
            sky = model.get_sky_steps(query)
            self.assertAlmostEqual(sky.ra - query.ra, offset[0], delta=100)
            self.assertAlmostEqual(sky.dec - query.dec, offset[1], delta=50)

            mount_axes = model.geometry.encoder_to_axes(query)
            back = model.get_mount_axes(model.get_sky_axes(mount_axes))
            assert_axes_close(self, back, mount_axes, 0.05)

    def test_nearest_mode(self):
        """
        Description:
            Verifies the single-nearest-point delta correction.

        Methodology:
            1. Syncs four points with distinct deltas in nearest mode.
            2. Corrects a position next to the second point.

        Expected Results:
            - The second point's delta is applied in each direction.
        """
        model = self.build(alignment_mode="nearest")
        query = EncoderPosition(8495000, 8905000)
        delta = linear_target(GRID[1]) - GRID[1]
        self.assertEqual(model.get_sky_steps(query), query + delta)
        self.assertEqual(model.selected_point_ids, (2,))
        self.assertEqual([p.selected for p in model.alignment_points], [False, True, False, False])
        self.assertEqual(model.get_mount_steps(query + delta), query)

    def test_from_config(self):
        model = AlignmentModel.from_config(
            {"observer": {"latitude": LATITUDE}, "alignment": {"transform": "taki"}}
        )
        self.assertIs(model._transform_class, TakiTransform)
        self.assertEqual(model.settings.latitude, LATITUDE)


class TestRecordedSyncs(unittest.TestCase):
    """
    Corrections over the 23 syncs recorded on an EQ6 at latitude 52.67 N.
    """

    # encoder, (ra, dec) synced on, target, sync time
    SYNCS = [
        ((8987817, 8919464), (23.6715774536133, 77.7643051147461), (8987821, 8919479), (2022, 11, 28, 19, 6, 6)),
        ((7985357, 9135000), (21.481803894043, 70.6648559570313), (7985268, 9135003), (2022, 11, 28, 19, 7, 17)),
        ((7847708, 9164640), (22.8413619995117, 66.3250198364258), (7847528, 9164630), (2022, 11, 28, 19, 8, 9)),
        ((8200354, 9412632), (21.2521438598633, 29.9979152679443), (8200185, 9412623), (2022, 11, 30, 20, 51, 15)),
        ((8380206, 9263912), (19.5041027069092, 51.7807502746582), (8380039, 9263918), (2022, 11, 30, 20, 51, 45)),
        ((8421824, 9522552), (19.107213973999, 13.8985624313354), (8421625, 9522528), (2022, 11, 30, 20, 52, 18)),
        ((7887790, 9676808), (0.343226462602615, -8.69821166992188), (7887531, 9676788), (2022, 11, 30, 20, 53, 31)),
        ((7907761, 9417944), (0.159508779644966, 29.2189121246338), (7907519, 9417941), (2022, 11, 30, 20, 54, 12)),
        ((8155121, 9549296), (21.7548809051514, 9.98066520690918), (8154849, 9549274), (2022, 11, 30, 20, 54, 51)),
        ((8964653, 8318792), (1.87664878368378, -10.2228670120239), (8964648, 8318820), (2022, 11, 30, 20, 56, 38)),
        ((8549669, 8439192), (5.94036722183228, 7.41184711456299), (8549590, 8439206), (2022, 11, 30, 20, 57, 16)),
        ((8836220, 8668816), (3.16128063201904, 41.0447845458984), (8836045, 8668807), (2022, 11, 30, 20, 58, 21)),
        ((8810409, 8729584), (3.43303275108337, 49.9433364868164), (8810306, 8729555), (2022, 11, 30, 20, 59, 35)),
        ((8028636, 8809304), (11.0852670669556, 61.624095916748), (8028459, 8809295), (2022, 11, 30, 21, 0, 36)),
        ((8378814, 8423856), (7.6750659942627, 5.16721248626709), (8378754, 8423883), (2022, 11, 30, 21, 1, 14)),
        ((8387315, 8605928), (7.60103368759155, 31.8366107940674), (8387210, 8605946), (2022, 11, 30, 21, 1, 45)),
        ((8206767, 8622712), (9.37405490875244, 34.2941551208496), (8206583, 8622723), (2022, 11, 30, 21, 2, 17)),
        ((8661869, 8841768), (4.93953990936279, 66.3796844482422), (8661823, 8841760), (2022, 11, 30, 21, 2, 58)),
        ((8625168, 8702760), (5.30665588378906, 46.0202331542969), (8624972, 8702773), (2022, 11, 30, 21, 3, 24)),
        ((8696329, 8501640), (4.62079238891602, 16.5555591583252), (8696186, 8501627), (2022, 11, 30, 21, 3, 58)),
        ((8959119, 9178696), (14.0829401016235, 64.2641220092773), (8959093, 9178699), (2022, 11, 30, 21, 5, 44)),
        ((8912307, 9356584), (14.549503326416, 38.2075653076172), (8912190, 9356578), (2022, 11, 30, 21, 6, 15)),
        ((8412924, 9595864), (19.4437313079834, 3.1609582901001), (8412645, 9595830), (2022, 11, 30, 21, 7, 12)),
    ]

    # mount encoder -> expected sky encoder, along a recorded slew
    ENCLOSED = [
        ((8230828, 8846880), (8230673, 8846876)),
        ((8224348, 8840368), (8224190, 8840364)),
        ((8218348, 8834408), (8218188, 8834403)),
        ((8212404, 8828464), (8212194, 8828474)),
        ((8206588, 8822600), (8206462, 8822595)),
        ((8200468, 8816552), (8200335, 8816551)),
        ((8194660, 8810696), (8194520, 8810698)),
        ((8188596, 8804648), (8188449, 8804653)),
        ((8182428, 8798504), (8182274, 8798512)),
        ((8176548, 8792552), (8176361, 8792548)),
        ((8170364, 8786408), (8170243, 8786429)),
        ((8164220, 8780272), (8164092, 8780291)),
        ((8158084, 8774128), (8157949, 8774145)),
        ((8152220, 8768264), (8152079, 8768280)),
        ((8145812, 8761840), (8145665, 8761853)),
        ((8139652, 8755696), (8139500, 8755707)),
        ((8133436, 8749464), (8133279, 8749473)),
        ((8127020, 8743040), (8126858, 8743046)),
        ((8120820, 8736896), (8120654, 8736900)),
        ((8115020, 8731040), (8114850, 8731041)),
        ((8108492, 8724512), (8108318, 8724510)),
        ((8102428, 8718456), (8102251, 8718452)),
    ]

    # Positions outside every alignment triangle, with the sky position the
    # legacy driver reported by reusing the previous triangle's matrix.
    OUTSIDE = [
        ((8052543, 8698296), (8052366, 8698287)),
        ((8052550, 8698296), (8052373, 8698287)),
        ((8052557, 8698296), (8052380, 8698287)),
        ((8052564, 8698296), (8052387, 8698287)),
    ]

    def setUp(self):
        self.model = AlignmentModel(
            AlignmentSettings(
                latitude=LATITUDE,
                longitude=-1.33888888888889,
                elevation=200.0,
                home_position=(8388608, 9003008),
                proximity_limit=0.0,
            )
        )
        for encoder, ra_dec, target, when in self.SYNCS:
            self.model.add_alignment_point(encoder, ra_dec, target, datetime(*when))

    def test_all_points_kept(self):
        self.assertEqual(len(self.model.alignment_points), 23)
        self.assertEqual(self.model.encoder_mapping_offset, EncoderPosition(0, 0))

    def test_enclosed_positions(self):
        """
        Description:
            Verifies corrections inside the recorded alignment triangles
            against the values the EQMOD driver produced along a slew.

        Methodology:
            1. Loads the 23 recorded syncs in the polar working frame with
               the best-centroid policy.
            2. Maps each mount encoder position to the sky.

        Expected Results:
            - Every corrected position is within 120 steps of the recorded one.
            - Each correction uses three alignment points.
        """
        for mount, expected in self.ENCLOSED:
            sky = self.model.get_sky_steps(mount)
            self.assertAlmostEqual(sky.ra, expected[0], delta=120, msg=str(mount))
            self.assertAlmostEqual(sky.dec, expected[1], delta=120, msg=str(mount))
            self.assertEqual(len(self.model.selected_point_ids), 3)

    def test_positions_outside_every_triangle(self):
        """
        Description:
            Verifies the nearest-three fallback where no triangle encloses
            the position.

        Methodology:
            1. Maps positions that lie outside every alignment triangle.

        Expected Results:
            - A correction from the three nearest points is applied.
            - It departs from the legacy value, which came from the matrix
              of whichever triangle had been used last.
        """
        for mount, legacy in self.OUTSIDE:
            sky = self.model.get_sky_steps(mount)
            self.assertNotEqual(sky, mount)
            self.assertEqual(len(self.model.selected_point_ids), 3)
            self.assertGreater(abs(sky.ra - legacy[0]), 120)
            self.assertGreater(abs(sky.dec - legacy[1]), 120)


class TestSkyHelpers(unittest.TestCase):
    def test_ra_dec_axes_round_trip(self):
        model = raw_model()
        when = datetime(2022, 11, 28, 19, 6, 6, tzinfo=timezone.utc)
        for flipped in (False, True):
            axes = model.ra_dec_to_axes(23.6715774536133, 77.7643051147461, when, flipped)
            back = model.axes_to_ra_dec(axes, when)
            assert_axes_close(self, back, AxisPosition(23.6715774536133, 77.7643051147461), 0.002)

    def test_ra_dec_to_alt_az(self):
        model = raw_model()
        when = datetime(2022, 11, 28, 19, 6, 6, tzinfo=timezone.utc)
        lst = local_sidereal_time(model.settings.longitude, when)

        alt, az = model.ra_dec_to_alt_az(range24(lst - 4.48782288093145), 269.701135375515, when)
        self.assertAlmostEqual(alt, -52.7827108032482, places=5)
        self.assertAlmostEqual(az, 179.544092452796, places=5)

        alt, _ = model.ra_dec_to_alt_az(lst, 90.0, when)
        self.assertAlmostEqual(alt, LATITUDE, places=6)


if __name__ == "__main__":
    unittest.main()

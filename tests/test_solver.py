"""
Solver 集成测试
"""
import unittest
import numpy as np
from scipy.spatial.transform import Rotation as R

from closure_ik import DOF, Goal, Joint, Link, Solver, SolveStatus, axis_to_dof, find_roots

POSITION_TOLERANCE = 5e-4


def build_planar_arm(lengths=(1.0, 1.0)):
    """
    平面机械臂：每个关节绕 Z 轴旋转，连杆沿局部 X 轴排列

    :return: (root, joints, end)
    """
    root = Link('root')
    parent = root
    joints = []
    offset = 0.0
    for i, length in enumerate(lengths):
        joint = Joint(f'joint{i}')
        joint.set_dof(DOF.EZ)
        joint.set_position(offset, 0.0, 0.0)
        link = Link(f'link{i}')
        parent.add_child(joint)
        joint.add_child(link)
        joints.append(joint)
        parent = link
        offset = length

    end = Link('end')
    end.set_position(offset, 0.0, 0.0)
    parent.add_child(end)
    return root, joints, end


def add_goal(end: Link, position, *goal_dof):
    goal = Goal('goal')
    goal.set_position(*position)
    goal.make_closure(end)
    if goal_dof:
        goal.set_goal_dof(*goal_dof)
    return goal


def build_axis_chain(axes, lengths):
    """按给定的旋转轴构建串联链：每个关节相对上一个连杆沿 Z 轴偏移 length"""
    root = Link('root')
    parent = root
    joints = []
    for axis, length in zip(axes, lengths):
        joint = Joint()
        joint.set_dof(axis_to_dof(axis))
        joint.set_position(0.0, 0.0, length)
        link = Link()
        parent.add_child(joint)
        joint.add_child(link)
        joints.append(joint)
        parent = link
    return root, joints, parent


class TestSolverConvergence(unittest.TestCase):

    def test_planar_two_link_reaches_goal(self):
        root, joints, end = build_planar_arm()
        goal = add_goal(end, (0.5, 1.1, 0.0), DOF.X, DOF.Y, DOF.Z)

        solver = Solver(find_roots([root]))
        solver.max_iterations = 80
        statuses = solver.solve()

        self.assertEqual(statuses, [SolveStatus.CONVERGED])
        error = np.linalg.norm(end.get_world_position() - np.array([0.5, 1.1, 0.0]))
        self.assertLess(error, POSITION_TOLERANCE)

        pos, _ = goal.get_closure_error()
        self.assertLess(float(np.linalg.norm(pos)), solver.translation_converge_threshold)

    def test_already_satisfied_goal_is_untouched(self):
        root, joints, end = build_axis_chain([[0, 0, 1], [0, 0, 1]], [0.9, 1.1])
        goal = Goal()
        root.add_child(goal)
        goal.set_world_position(*end.get_world_position())
        goal.make_closure(end)
        goal.set_goal_dof(DOF.X, DOF.Y, DOF.Z)

        solver = Solver([root], translation_converge_threshold=5e-6, rotation_converge_threshold=1e-7)
        statuses = solver.solve()

        self.assertEqual(statuses, [SolveStatus.CONVERGED])
        for joint in joints:
            self.assertEqual(joint.dof_values[DOF.EZ], 0.0)

    def test_masked_goal_ignores_unconstrained_axis(self):
        root, joints, end = build_planar_arm()
        add_goal(end, (0.5, 1.1, 0.7), DOF.X, DOF.Y)

        solver = Solver(find_roots([root]), max_iterations=80)
        self.assertEqual(solver.solve(), [SolveStatus.CONVERGED])

        position = end.get_world_position()
        np.testing.assert_allclose(position[:2], [0.5, 1.1], atol=POSITION_TOLERANCE)
        self.assertAlmostEqual(position[2], 0.0, places=12)

    def test_full_pose_goal(self):
        root, joints, end = build_planar_arm()
        # 由关节角 (0.3, 0.9) 正向计算得到的可达位姿
        goal = Goal('goal')
        goal.set_position(np.cos(0.3) + np.cos(1.2), np.sin(0.3) + np.sin(1.2), 0.0)
        goal.set_euler(0.0, 0.0, 1.2)
        goal.make_closure(end)

        solver = Solver(find_roots([root]))
        self.assertEqual(solver.solve(), [SolveStatus.CONVERGED])

        pos, quat = goal.get_closure_error()
        self.assertLess(float(np.linalg.norm(pos)), 1e-4)
        self.assertLess(2.0 * np.arctan2(np.linalg.norm(quat[:3]), abs(quat[3])), 1e-4)

    def test_closure_loop_with_dof_on_closure_joint(self):
        root = Link('root')
        joint_a = Joint('joint_a')
        link_a = Link('link_a')
        joint_b = Joint('joint_b')
        anchor = Link('anchor')

        root.add_child(joint_a)
        joint_a.add_child(link_a)
        link_a.add_child(joint_b)
        root.add_child(anchor)

        joint_a.set_dof(DOF.EZ)
        joint_a.set_dof_value(DOF.EZ, 0.3)
        joint_b.set_dof(DOF.EZ)
        joint_b.set_position(1.0, 0.0, 0.0)
        anchor.set_position(1.0, 0.0, 0.0)
        joint_b.make_closure(anchor)

        solver = Solver(find_roots([root]))
        self.assertEqual(solver.solve(), [SolveStatus.CONVERGED])

        self.assertLess(abs(joint_a.dof_values[DOF.EZ]), 1e-3)
        self.assertLess(abs(joint_b.dof_values[DOF.EZ]), 1e-3)

    def test_independent_branches_are_separate_chains(self):
        root = Link('root')
        ends = []
        for i, sign in enumerate((1.0, -1.0)):
            joint = Joint(f'joint{i}')
            joint.set_dof(DOF.EZ)
            link = Link(f'end{i}')
            link.set_position(sign, 0.0, 0.0)
            root.add_child(joint)
            joint.add_child(link)
            ends.append(link)

        add_goal(ends[0], (0.0, 1.0, 0.0), DOF.X, DOF.Y, DOF.Z)
        add_goal(ends[1], (0.0, -1.0, 0.0), DOF.X, DOF.Y, DOF.Z)

        solver = Solver(find_roots([root]))
        self.assertEqual(len(solver.chains), 2)
        self.assertEqual(solver.solve(), [SolveStatus.CONVERGED, SolveStatus.CONVERGED])

        np.testing.assert_allclose(ends[0].get_world_position(), [0.0, 1.0, 0.0], atol=POSITION_TOLERANCE)
        np.testing.assert_allclose(ends[1].get_world_position(), [0.0, -1.0, 0.0], atol=POSITION_TOLERANCE)


class TestSolverBehavior(unittest.TestCase):

    def test_no_closures(self):
        root, joints, end = build_planar_arm()
        self.assertEqual(Solver(root).solve(), [])
        self.assertEqual(Solver().solve(), [])

    def test_timeout(self):
        root, joints, end = build_planar_arm()
        add_goal(end, (0.5, 1.1, 0.0), DOF.X, DOF.Y, DOF.Z)

        solver = Solver(find_roots([root]), max_iterations=1)
        self.assertEqual(solver.solve(), [SolveStatus.TIMEOUT])

    def test_joint_limits_are_respected(self):
        root, joints, end = build_planar_arm()
        joints[0].set_min_limit(DOF.EZ, -0.1)
        joints[0].set_max_limit(DOF.EZ, 0.1)
        add_goal(end, (-0.5, 1.5, 0.0), DOF.X, DOF.Y, DOF.Z)

        Solver(find_roots([root])).solve()

        value = joints[0].dof_values[DOF.EZ]
        self.assertGreaterEqual(value, -0.1)
        self.assertLessEqual(value, 0.1)

    def test_unreachable_goal_stalls_and_rolls_back(self):
        root, joints, end = build_planar_arm()
        add_goal(end, (5.0, 0.0, 0.0), DOF.X, DOF.Y, DOF.Z)

        statuses = Solver(find_roots([root])).solve()

        self.assertEqual(statuses, [SolveStatus.STALLED])
        np.testing.assert_allclose(end.get_world_position(), [2.0, 0.0, 0.0], atol=1e-3)

    def test_update_structure_picks_up_new_closures(self):
        root, joints, end = build_planar_arm()
        solver = Solver(root)
        self.assertEqual(solver.chains, [])

        goal = add_goal(end, (0.0, 1.5, 0.0))
        goal.set_goal_dof(DOF.X, DOF.Y, DOF.Z)
        self.assertEqual(solver.solve(), [])

        solver.set_roots(find_roots([root]))
        self.assertEqual(len(solver.chains), 1)
        self.assertEqual(solver.solve(), [SolveStatus.CONVERGED])

        goal.remove_child(end)
        solver.update_structure()
        self.assertEqual(solver.solve(), [])

    def test_settings(self):
        solver = Solver(max_iterations=5, damping_factor=0.1)
        self.assertEqual(solver.max_iterations, 5)
        self.assertEqual(solver.damping_factor, 0.1)

        with self.assertRaises(ValueError):
            Solver(unknown_setting=1)
        with self.assertRaises(ValueError):
            solver.apply_settings({'max_iter': 3})

    def test_diverging_step_is_rolled_back(self):
        root = Link('root')
        joint = Joint('joint')
        end = Link('end')
        root.add_child(joint)
        joint.add_child(end)
        joint.set_dof(DOF.EZ)
        end.set_position(1.0, 0.0, 0.0)
        add_goal(end, (0.5, 3.0, 0.0), DOF.X, DOF.Y, DOF.Z)

        # 不限幅时一步转动约 3 rad，越过目标方向，误差反而增大
        solver = Solver(find_roots([root]), enable_line_search=False, translation_error_clamp=10.0)
        self.assertEqual(solver.solve(), [SolveStatus.DIVERGED])

        self.assertEqual(joint.dof_values[DOF.EZ], 0.0)
        np.testing.assert_allclose(end.get_world_position(), [1.0, 0.0, 0.0], atol=1e-12)

    def test_matrix_pool_does_not_grow_across_solves(self):
        root, joints, end = build_planar_arm()
        goal = add_goal(end, (0.5, 1.1, 0.0), DOF.X, DOF.Y, DOF.Z)

        solver = Solver(find_roots([root]))
        self.assertEqual(solver.solve(), [SolveStatus.CONVERGED])
        size = len(solver.matrix_pool)
        self.assertGreater(size, 0)

        for position in ((0.8, 1.2, 0.0), (-0.3, 1.4, 0.0), (1.1, -0.6, 0.0)):
            goal.set_position(*position)
            solver.solve()
            self.assertEqual(len(solver.matrix_pool), size)


class TestRestPoseBias(unittest.TestCase):

    def test_bias_does_not_limit_accuracy(self):
        root, joints, end = build_planar_arm((1.0, 1.0, 1.0))
        goal = add_goal(end, (1.5, 1.0, 0.0), DOF.X, DOF.Y, DOF.Z)

        solver = Solver(find_roots([root]), translation_converge_threshold=1e-7)
        self.assertGreater(solver.rest_pose_factor, 0.0)
        self.assertEqual(solver.solve(), [SolveStatus.CONVERGED])

        pos, _ = goal.get_closure_error()
        self.assertLess(float(np.linalg.norm(pos)), 1e-7)

    def test_redundant_joint_moves_toward_target(self):
        distances = {}
        for factor in (0.0, 0.2):
            root, joints, end = build_planar_arm((1.0, 1.0, 1.0))
            joints[2].set_target_value(DOF.EZ, -1.0)
            add_goal(end, (1.5, 1.0, 0.0), DOF.X, DOF.Y, DOF.Z)

            solver = Solver(find_roots([root]), rest_pose_factor=factor)
            self.assertEqual(solver.solve(), [SolveStatus.CONVERGED])
            np.testing.assert_allclose(end.get_world_position(), [1.5, 1.0, 0.0], atol=POSITION_TOLERANCE)
            distances[factor] = abs(joints[2].dof_values[DOF.EZ] + 1.0)

        self.assertLess(distances[0.2], distances[0.0])


class TestForwardKinematics(unittest.TestCase):

    def test_mixed_axis_rotations_match_forward_transform(self):
        axes = [[0, 1, 0], [0, 0, 1], [1, 0, 0]]
        lengths = [0.6, 0.8, 0.5]
        root, joints, end = build_axis_chain(axes, lengths)

        values = [0.35, -0.4, 0.5]
        joints[0].set_dof_value(DOF.EY, values[0])
        joints[1].set_dof_value(DOF.EZ, values[1])
        joints[2].set_dof_value(DOF.EX, values[2])
        root.update_matrix_world(force=True)

        expected = np.identity(4)
        for axis, length, value in zip(axes, lengths, values):
            step = np.identity(4)
            step[:3, :3] = R.from_rotvec(np.array(axis, dtype=float) * value).as_matrix()
            step[:3, 3] = (0.0, 0.0, length)
            expected = expected @ step

        np.testing.assert_allclose(end.get_world_position(), expected[:3, 3], atol=1e-12)
        np.testing.assert_allclose(end.matrix_world, expected, atol=1e-12)


if __name__ == '__main__':
    unittest.main()

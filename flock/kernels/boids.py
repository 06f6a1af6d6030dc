"""Warp kernels for the boids flocking stages."""

import warp as wp

from flock.utils.config import RuleConfig

CELL_SENTINEL = wp.constant(-1)

# Slots of the per-step diagnostics counter array.
DIAG_OUT_OF_GRID = wp.constant(0)
DIAG_SPEED_CLAMPED = wp.constant(1)
DIAG_SLOTS = 2


@wp.struct
class FlockRules:
    rule1_distance: float
    rule2_distance: float
    rule3_distance: float
    rule1_scale: float
    rule2_scale: float
    rule3_scale: float
    max_speed: float


@wp.struct
class GridParams:
    minimum: wp.vec3
    inverse_cell_width: float
    resolution: int


def create_flock_rules(rules: RuleConfig, max_speed: float) -> FlockRules:
    """Pack the rule tunables into the struct shared by every velocity kernel."""

    params = FlockRules()
    params.rule1_distance = float(rules.rule1_distance)
    params.rule2_distance = float(rules.rule2_distance)
    params.rule3_distance = float(rules.rule3_distance)
    params.rule1_scale = float(rules.rule1_scale)
    params.rule2_scale = float(rules.rule2_scale)
    params.rule3_scale = float(rules.rule3_scale)
    params.max_speed = float(max_speed)
    return params


@wp.func
def flatten_cell(x: int, y: int, z: int, resolution: int) -> int:
    return x + y * resolution + z * resolution * resolution


@wp.func
def in_lattice(x: int, y: int, z: int, resolution: int) -> bool:
    if x < 0 or x >= resolution:
        return False
    if y < 0 or y >= resolution:
        return False
    if z < 0 or z >= resolution:
        return False
    return True


@wp.func
def octant_step(coord: float) -> int:
    # coord is in cell units; the neighbour cell is taken on the side of the
    # half-cell the particle sits in.
    if coord - wp.floor(coord) >= 0.5:
        return 1
    return -1


@wp.func
def within(dist: float, radius: float) -> float:
    if dist < radius:
        return 1.0
    return 0.0


@wp.func
def combine_rules(
    pos_i: wp.vec3,
    vel_i: wp.vec3,
    center: wp.vec3,
    cohesion_count: float,
    separate: wp.vec3,
    align: wp.vec3,
    alignment_count: float,
    rules: FlockRules,
) -> wp.vec3:
    v = vel_i + separate * rules.rule2_scale
    if cohesion_count > 0.0:
        v = v + (center / cohesion_count - pos_i) * rules.rule1_scale
    if alignment_count > 0.0:
        v = v + (align / alignment_count) * rules.rule3_scale
    return v


@wp.func
def store_clamped(
    velocities_out: wp.array(dtype=wp.vec3),
    index: int,
    v: wp.vec3,
    max_speed: float,
    diagnostics: wp.array(dtype=wp.int32),
):
    speed = wp.length(v)
    if speed > max_speed:
        wp.atomic_add(diagnostics, DIAG_SPEED_CLAMPED, 1)
        velocities_out[index] = v * (max_speed / speed)
    else:
        velocities_out[index] = v


@wp.func
def wrap_coordinate(x: float, scale: float) -> float:
    if x < -scale:
        return scale
    if x > scale:
        return -scale
    return x


@wp.kernel
def compute_grid_indices_kernel(
    positions: wp.array(dtype=wp.vec3),
    grid: GridParams,
    slot_of: wp.array(dtype=wp.int32),
    cell_of: wp.array(dtype=wp.int32),
    diagnostics: wp.array(dtype=wp.int32),
):
    i = wp.tid()
    g = (positions[i] - grid.minimum) * grid.inverse_cell_width
    x = int(wp.floor(g[0]))
    y = int(wp.floor(g[1]))
    z = int(wp.floor(g[2]))

    if not in_lattice(x, y, z, grid.resolution):
        # Reported to the host, which rejects the step; clamp so the table writes stay in range.
        wp.atomic_add(diagnostics, DIAG_OUT_OF_GRID, 1)
        x = wp.clamp(x, 0, grid.resolution - 1)
        y = wp.clamp(y, 0, grid.resolution - 1)
        z = wp.clamp(z, 0, grid.resolution - 1)

    slot_of[i] = i
    cell_of[i] = flatten_cell(x, y, z, grid.resolution)


@wp.kernel
def identify_cell_bounds_kernel(
    cell_of: wp.array(dtype=wp.int32),
    count: int,
    cell_start: wp.array(dtype=wp.int32),
    cell_end: wp.array(dtype=wp.int32),
):
    """Record the half-open [start, end) range of every populated cell."""

    i = wp.tid()
    cell = cell_of[i]
    if i == 0:
        cell_start[cell] = 0
    else:
        prev = cell_of[i - 1]
        if prev != cell:
            cell_end[prev] = i
            cell_start[cell] = i
    if i == count - 1:
        cell_end[cell] = count


@wp.kernel
def reorder_particles_kernel(
    slot_of: wp.array(dtype=wp.int32),
    positions: wp.array(dtype=wp.vec3),
    velocities: wp.array(dtype=wp.vec3),
    positions_out: wp.array(dtype=wp.vec3),
    velocities_out: wp.array(dtype=wp.vec3),
):
    i = wp.tid()
    s = slot_of[i]
    positions_out[i] = positions[s]
    velocities_out[i] = velocities[s]


@wp.kernel
def brute_force_velocity_kernel(
    positions: wp.array(dtype=wp.vec3),
    velocities: wp.array(dtype=wp.vec3),
    count: int,
    rules: FlockRules,
    velocities_out: wp.array(dtype=wp.vec3),
    diagnostics: wp.array(dtype=wp.int32),
):
    i = wp.tid()
    pos_i = positions[i]

    center = wp.vec3(0.0, 0.0, 0.0)
    separate = wp.vec3(0.0, 0.0, 0.0)
    align = wp.vec3(0.0, 0.0, 0.0)
    cohesion_count = float(0.0)
    alignment_count = float(0.0)

    for j in range(count):
        if j == i:
            continue
        pos_j = positions[j]
        dist = wp.length(pos_j - pos_i)
        w1 = within(dist, rules.rule1_distance)
        center += pos_j * w1
        cohesion_count += w1
        separate += (pos_i - pos_j) * within(dist, rules.rule2_distance)
        w3 = within(dist, rules.rule3_distance)
        align += velocities[j] * w3
        alignment_count += w3

    v = combine_rules(pos_i, velocities[i], center, cohesion_count, separate, align, alignment_count, rules)
    store_clamped(velocities_out, i, v, rules.max_speed, diagnostics)


@wp.kernel
def scattered_velocity_kernel(
    positions: wp.array(dtype=wp.vec3),
    velocities: wp.array(dtype=wp.vec3),
    slot_of: wp.array(dtype=wp.int32),
    cell_start: wp.array(dtype=wp.int32),
    cell_end: wp.array(dtype=wp.int32),
    grid: GridParams,
    rules: FlockRules,
    velocities_out: wp.array(dtype=wp.vec3),
    diagnostics: wp.array(dtype=wp.int32),
):
    """Grid search over unsorted buffers, reaching particles through ``slot_of``."""

    i = wp.tid()
    s = slot_of[i]
    pos_s = positions[s]

    g = (pos_s - grid.minimum) * grid.inverse_cell_width
    cx = int(wp.floor(g[0]))
    cy = int(wp.floor(g[1]))
    cz = int(wp.floor(g[2]))
    sx = octant_step(g[0])
    sy = octant_step(g[1])
    sz = octant_step(g[2])

    center = wp.vec3(0.0, 0.0, 0.0)
    separate = wp.vec3(0.0, 0.0, 0.0)
    align = wp.vec3(0.0, 0.0, 0.0)
    cohesion_count = float(0.0)
    alignment_count = float(0.0)

    for dz in range(2):
        for dy in range(2):
            for dx in range(2):
                x = cx + dx * sx
                y = cy + dy * sy
                z = cz + dz * sz
                if not in_lattice(x, y, z, grid.resolution):
                    continue
                cell = flatten_cell(x, y, z, grid.resolution)
                start = cell_start[cell]
                if start == CELL_SENTINEL:
                    continue
                end = cell_end[cell]
                for j in range(start, end):
                    k = slot_of[j]
                    if k == s:
                        continue
                    pos_k = positions[k]
                    dist = wp.length(pos_k - pos_s)
                    w1 = within(dist, rules.rule1_distance)
                    center += pos_k * w1
                    cohesion_count += w1
                    separate += (pos_s - pos_k) * within(dist, rules.rule2_distance)
                    w3 = within(dist, rules.rule3_distance)
                    align += velocities[k] * w3
                    alignment_count += w3

    v = combine_rules(pos_s, velocities[s], center, cohesion_count, separate, align, alignment_count, rules)
    store_clamped(velocities_out, s, v, rules.max_speed, diagnostics)


@wp.kernel
def coherent_velocity_kernel(
    positions: wp.array(dtype=wp.vec3),
    velocities: wp.array(dtype=wp.vec3),
    cell_start: wp.array(dtype=wp.int32),
    cell_end: wp.array(dtype=wp.int32),
    grid: GridParams,
    rules: FlockRules,
    velocities_out: wp.array(dtype=wp.vec3),
    diagnostics: wp.array(dtype=wp.int32),
):
    """Grid search over buffers already laid out in sorted cell order."""

    i = wp.tid()
    pos_i = positions[i]

    g = (pos_i - grid.minimum) * grid.inverse_cell_width
    cx = int(wp.floor(g[0]))
    cy = int(wp.floor(g[1]))
    cz = int(wp.floor(g[2]))
    sx = octant_step(g[0])
    sy = octant_step(g[1])
    sz = octant_step(g[2])

    center = wp.vec3(0.0, 0.0, 0.0)
    separate = wp.vec3(0.0, 0.0, 0.0)
    align = wp.vec3(0.0, 0.0, 0.0)
    cohesion_count = float(0.0)
    alignment_count = float(0.0)

    for dz in range(2):
        for dy in range(2):
            for dx in range(2):
                x = cx + dx * sx
                y = cy + dy * sy
                z = cz + dz * sz
                if not in_lattice(x, y, z, grid.resolution):
                    continue
                cell = flatten_cell(x, y, z, grid.resolution)
                start = cell_start[cell]
                if start == CELL_SENTINEL:
                    continue
                end = cell_end[cell]
                for j in range(start, end):
                    if j == i:
                        continue
                    pos_j = positions[j]
                    dist = wp.length(pos_j - pos_i)
                    w1 = within(dist, rules.rule1_distance)
                    center += pos_j * w1
                    cohesion_count += w1
                    separate += (pos_i - pos_j) * within(dist, rules.rule2_distance)
                    w3 = within(dist, rules.rule3_distance)
                    align += velocities[j] * w3
                    alignment_count += w3

    v = combine_rules(pos_i, velocities[i], center, cohesion_count, separate, align, alignment_count, rules)
    store_clamped(velocities_out, i, v, rules.max_speed, diagnostics)


@wp.kernel
def integrate_positions_kernel(
    positions: wp.array(dtype=wp.vec3),
    velocities: wp.array(dtype=wp.vec3),
    dt: float,
    scene_scale: float,
):
    i = wp.tid()
    p = positions[i] + velocities[i] * dt
    positions[i] = wp.vec3(
        wrap_coordinate(p[0], scene_scale),
        wrap_coordinate(p[1], scene_scale),
        wrap_coordinate(p[2], scene_scale),
    )

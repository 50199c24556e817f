# geocast_engine/plotting.py
import matplotlib

# Must be set BEFORE importing pyplot
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import networkx as nx
from matplotlib.patches import Polygon


def render_topology(simulator, plot_path, title=None):
    """Save a snapshot of regions, node positions and live links to plot_path."""
    fig, ax = plt.subplots()

    for region in simulator.regions:
        ax.add_patch(Polygon(region.vertices, closed=True, fill=False,
                             edgecolor='grey', linestyle='--', linewidth=0.8))
        xmin, ymin, xmax, ymax = region.bounds
        ax.text((xmin + xmax) / 2, (ymin + ymax) / 2, region.name,
                fontsize=6, color='grey', ha='center', va='center')

    positions = {node.id: node.location for node in simulator.nodes}
    colors = ['orange' if simulator.routing.buffers[node.id] else 'skyblue'
              for node in simulator.nodes]
    nx.draw(simulator.G, pos=positions, ax=ax, nodelist=[node.id for node in simulator.nodes],
            with_labels=True, node_size=120, node_color=colors, font_size=6)

    ax.set_title(title or f"{simulator.protocol} at t={simulator.env.now:.0f}s")
    # Set limits based on area to ensure consistent plot scales
    ax.set_xlim(0, simulator.area_size[0])
    ax.set_ylim(0, simulator.area_size[1])
    ax.tick_params(left=True, bottom=True, labelleft=True, labelbottom=True)

    plt.savefig(plot_path, bbox_inches='tight')
    plt.close(fig)
    return plot_path

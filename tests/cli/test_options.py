import steward


def test_no_options(invoke, preload, real_run):
    result = invoke(['run'])
    assert result.exit_code == 0
    assert preload.called
    assert preload.call_args == ((), dict(paths=(), modules=()))
    assert real_run.called
    assert real_run.call_args[1]['router'] is steward.get_default_router()
    assert real_run.call_args[1]['namespace'] is None


def test_all_options(invoke, preload, real_run):
    result = invoke([
        'run',
        '--namespace', 'ns1',
        '--name', 'demo',
        '-m', 'package.module_1',
        '--module', 'package.module_2',
        'handler1.py',
    ])
    assert result.exit_code == 0
    assert preload.call_args == ((), dict(paths=('handler1.py',),
                                          modules=('package.module_1', 'package.module_2')))
    assert real_run.call_args[1]['namespace'] == 'ns1'
    assert real_run.call_args[1]['router'].name == 'demo'


def test_options_from_envvars(invoke, preload, real_run):
    result = invoke(['run'], env={'STEWARD_RUN_NAMESPACE': 'ns2'})
    assert result.exit_code == 0
    assert real_run.call_args[1]['namespace'] == 'ns2'


def test_peering_is_disabled_by_default(invoke, preload, real_run):
    result = invoke(['run'])
    assert result.exit_code == 0
    assert real_run.call_args[1]['router'].settings.peering.standalone is True


def test_peering_name(invoke, preload, real_run):
    result = invoke(['run', '--peering', 'lease1'])
    assert result.exit_code == 0
    peering = real_run.call_args[1]['router'].settings.peering
    assert peering.name == 'lease1'
    assert peering.standalone is False


def test_standalone_overrides_peering(invoke, preload, real_run):
    result = invoke(['run', '-P', 'lease1', '--standalone'])
    assert result.exit_code == 0
    assert real_run.call_args[1]['router'].settings.peering.standalone is True
